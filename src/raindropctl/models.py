from typing import Any, Generic, List, Literal, Optional, Type, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from .errors import SchemaValidationError

CollectionView = Literal["list", "simple", "grid", "masonry"]
RaindropType = Literal["link", "article", "image", "video", "document", "audio"]

UNSORTED_ID = 0
ALL_ID = -1
TRASH_ID = -99


class Ref(BaseModel):
    """Pointer to another entity, sent as {"$id": int}."""

    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(alias="$id")


class User(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(alias="_id")
    fullName: str
    email: Optional[str] = None
    avatar: Optional[str] = None
    pro: Optional[bool] = None


class Collection(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(alias="_id")
    title: str
    count: int
    parent: Optional[Ref] = None
    cover: Optional[List[str]] = None
    color: Optional[str] = None
    view: Optional[CollectionView] = None
    public: Optional[bool] = None
    expanded: Optional[bool] = None
    lastUpdate: Optional[str] = None
    created: Optional[str] = None
    sort: Optional[int] = None

    @property
    def parent_id(self) -> Optional[int]:
        return self.parent.id if self.parent else None


class Highlight(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    text: str
    note: Optional[str] = None
    color: Optional[str] = None
    created: Optional[str] = None


class Media(BaseModel):
    link: str
    type: str


class Raindrop(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(alias="_id")
    title: str
    link: str
    tags: List[str]
    excerpt: Optional[str] = None
    note: Optional[str] = None
    type: Optional[RaindropType] = None
    cover: Optional[str] = None
    domain: Optional[str] = None
    created: Optional[str] = None
    lastUpdate: Optional[str] = None
    collection: Optional[Ref] = None
    highlights: Optional[List[Highlight]] = None
    important: Optional[bool] = None
    removed: Optional[bool] = None
    media: Optional[List[Media]] = None

    @property
    def collection_id(self) -> Optional[int]:
        return self.collection.id if self.collection else None


class Tag(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    count: Optional[int] = None


class UserStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(alias="_id")
    count: int


class Suggestions(BaseModel):
    tags: Optional[List[str]] = None
    collections: Optional[List[Ref]] = None


class CoverIcon(BaseModel):
    png: str


class CoverGroup(BaseModel):
    icons: Optional[List[CoverIcon]] = None


# Request bodies. Dump with exclude_none=True, by_alias=True.

class CollectionCreate(BaseModel):
    title: str
    view: Optional[CollectionView] = None
    public: Optional[bool] = None
    parent: Optional[Ref] = None
    sort: Optional[int] = None
    cover: Optional[List[str]] = None
    color: Optional[str] = None


class CollectionUpdate(BaseModel):
    title: Optional[str] = None
    view: Optional[CollectionView] = None
    public: Optional[bool] = None
    parent: Optional[Ref] = None
    sort: Optional[int] = None
    cover: Optional[List[str]] = None
    color: Optional[str] = None
    expanded: Optional[bool] = None


class RaindropCreate(BaseModel):
    link: str
    title: Optional[str] = None
    excerpt: Optional[str] = None
    note: Optional[str] = None
    tags: Optional[List[str]] = None
    collection: Optional[Ref] = None
    type: Optional[RaindropType] = None
    important: Optional[bool] = None
    cover: Optional[str] = None


class RaindropUpdate(BaseModel):
    link: Optional[str] = None
    title: Optional[str] = None
    excerpt: Optional[str] = None
    note: Optional[str] = None
    tags: Optional[List[str]] = None
    collection: Optional[Ref] = None  # move target: {"$id": int}
    cover: Optional[str] = None
    important: Optional[bool] = None
    order: Optional[int] = None
    pleaseParse: Optional[bool] = None


# Response envelopes

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


class Envelope(BaseModel):
    result: bool
    errorMessage: Optional[str] = None


class UserEnvelope(Envelope):
    user: User


class ItemEnvelope(Envelope, Generic[T]):
    item: T


class ItemsEnvelope(Envelope, Generic[T]):
    items: List[T]


class ResultEnvelope(Envelope):
    count: Optional[int] = None


class SuggestionsEnvelope(Envelope):
    item: Optional[Suggestions] = None


def parse_response(model: Type[M], data: Any, context: str) -> M:
    """
    Validate a decoded response against its envelope model.
    Every violated field is listed in the raised error.
    """
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        issues = [
            f"{'.'.join(str(part) for part in err['loc']) or '(root)'}: {err['msg']}"
            for err in e.errors()
        ]
        raise SchemaValidationError(
            f"Invalid API response for {context}: {', '.join(issues)}", issues
        ) from e
