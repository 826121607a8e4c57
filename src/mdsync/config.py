"""Application configuration: settings schema and mdsync.yaml loader"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


CONFIG_FILE = "mdsync.yaml"


class Settings(BaseModel):
    app_name:               str   = "mdsync"
    debounce_ms:            int   = Field(default=300, ge=0, description="Quiet period before an editor change is emitted")
    update_debounce_ms:     int   = Field(default=50,  ge=0, description="Quiet period before the host pushes an update")
    max_file_size:          int   = Field(default=500 * 1024, ge=1, description="Large-file warning and image scan limit (bytes)")
    max_frontmatter_scan:   int   = Field(default=1024 * 1024, ge=1, description="Skip frontmatter parsing above this length")
    image_save_folder:      str   = Field(default="images", description="Folder for pasted images, relative to the document")
    auto_rename_images:     bool  = True
    auto_delete_images:     bool  = True
    upload_timeout:         float = Field(default=30.0, gt=0, description="Seconds to wait for an image upload")
    pending_image_timeout:  float = Field(default=10.0, gt=0, description="Seconds before a pasted image save may be retried")
    rename_timeout:         float = Field(default=60.0, gt=0, description="Seconds to wait for a rename confirmation")
    url_edit_timeout:       float = Field(default=60.0, gt=0, description="Seconds to wait for a URL edit answer")
    image_retry_limit:      int   = Field(default=4, ge=0, description="Flush retries while inline images are pending")
    image_retry_base_delay: float = Field(default=0.25, gt=0, description="First retry delay; doubles per attempt")
    markdown_glob:          str   = "**/*.md"
    exclude_glob:           str   = "**/node_modules/**"
    trash_dir:              str   = Field(default=".mdsync-trash", description="Recoverable trash folder inside the workspace")
    uri_scheme:             str   = Field(default="mdsync-resource", description="Scheme of session-local display URIs")


def load_config(overrides: dict[str, Any] = None) -> Settings:
    """Load Settings from mdsync.yaml, then MDSYNC_<FIELD> env vars, then non-None overrides."""
    data: dict[str, Any] = {}
    if Path(CONFIG_FILE).exists():
        try:
            data = yaml.safe_load(Path(CONFIG_FILE).read_text()) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid {CONFIG_FILE}: {e}") from e

    for name in Settings.model_fields:
        if val := os.getenv(f"MDSYNC_{name.upper()}"):
            data[name] = val

    if overrides:
        data.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**data)
