from typing import Any, Mapping, Type, TypeVar

import pydantic

from chatsync.errors import InvalidDocument


DocumentModelT = TypeVar("DocumentModelT", bound="DocumentModel")


class DocumentModel(pydantic.BaseModel):
    """Frozen model decoded from a stored or streamed document.

    Decoding fails loudly: a document with a missing or mistyped required
    field raises ``InvalidDocument`` instead of producing empty defaults.
    """

    model_config = pydantic.ConfigDict(frozen=True, populate_by_name=True)

    @classmethod
    def from_document(cls: Type[DocumentModelT], doc: Mapping[str, Any]) -> DocumentModelT:
        data = dict(doc)
        if "_id" in data:
            data["_id"] = str(data["_id"])
        try:
            return cls.model_validate(data)
        except pydantic.ValidationError as exc:
            raise InvalidDocument(f"Invalid {cls.__name__} document: {exc}") from exc

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
