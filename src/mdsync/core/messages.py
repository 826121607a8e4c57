"""Typed messages exchanged between the editing surface session and the document host"""

import logging
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel


LOGGER = logging.getLogger(__name__)


class _Message(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class Ready(_Message):
    type: Literal["ready"] = "ready"


class Update(_Message):
    """Host -> editor: full document text and the display map for its images."""
    type: Literal["update"] = "update"
    content: str
    image_map: dict[str, str] = Field(default_factory=dict)


class Edit(_Message):
    """Editor -> host: full reconstructed document text."""
    type: Literal["edit"] = "edit"
    content: str


class RequestImageUrlEdit(_Message):
    type: Literal["requestImageUrlEdit"] = "requestImageUrlEdit"
    edit_id: str
    current_url: str = ""
    is_local_image: bool = False
    is_base64: bool = False


class ImageUrlEditResponse(_Message):
    type: Literal["imageUrlEditResponse"] = "imageUrlEditResponse"
    edit_id: str
    new_url: Optional[str] = None


class RequestImageRename(_Message):
    type: Literal["requestImageRename"] = "requestImageRename"
    rename_id: str
    old_path: str
    new_path: str


class ImageRenameResponse(_Message):
    type: Literal["imageRenameResponse"] = "imageRenameResponse"
    rename_id: str
    success: bool
    new_path: str = ""
    webview_uri: Optional[str] = None


class SaveImage(_Message):
    """Editor -> host: a pasted or uploaded image as a base64 data URI."""
    type: Literal["saveImage"] = "saveImage"
    data: str
    filename: str
    blob_url: str


class ImageSaved(_Message):
    type: Literal["imageSaved"] = "imageSaved"
    blob_url: str
    saved_path: str
    webview_uri: Optional[str] = None


Message = Annotated[
    Union[
        Ready, Update, Edit,
        RequestImageUrlEdit, ImageUrlEditResponse,
        RequestImageRename, ImageRenameResponse,
        SaveImage, ImageSaved,
    ],
    Field(discriminator="type"),
]

_ADAPTER = TypeAdapter(Message)


def parse_message(data: Any) -> Optional[Message]:
    """Validate a raw dict into a typed message; None for anything malformed."""
    if isinstance(data, BaseModel):
        return data
    if not isinstance(data, dict):
        return None
    try:
        return _ADAPTER.validate_python(data)
    except ValidationError as e:
        LOGGER.debug("Dropping malformed message %r: %s", data.get("type"), e)
        return None
