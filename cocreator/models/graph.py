from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Mode(str, Enum):
    IMAGE = "image"
    STORY = "story"
    VIDEO = "video"


class ProviderId(str, Enum):
    GEMINI = "gemini"
    MISTRAL = "mistral"
    OPENROUTER = "openrouter"
    GROK = "grok"
    GROQ = "groq"
    OLLAMA = "ollama"


# --- Belief Graph ---


class Candidate(BaseModel):
    """One plausible value for an attribute or an alternative label."""
    name: str


class Attribute(BaseModel):
    name: str
    presence_in_prompt: bool = False
    value: list[Candidate] = []  # index 0 is the most likely candidate


class Entity(BaseModel):
    name: str
    presence_in_prompt: bool = False
    description: str = ""
    alternatives: list[Candidate] = []  # null from providers is read as no alternatives
    attributes: list[Attribute] = []

    @field_validator("alternatives", mode="before")
    @classmethod
    def _null_alternatives(cls, value):
        return [] if value is None else value

    def attribute(self, name: str) -> Optional[Attribute]:
        for attr in self.attributes:
            if attr.name == name:
                return attr
        return None


class Relationship(BaseModel):
    source: str  # entity name
    target: str  # entity name
    label: str = ""
    alternatives: list[Candidate] = []


class BeliefState(BaseModel):
    """Canonical graph for one (prompt, mode) pair. Replaced wholesale on refresh."""
    entities: list[Entity] = []
    relationships: list[Relationship] = []
    prompt: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.entities and not self.relationships

    def find_entity(self, name: str) -> Optional[Entity]:
        for entity in self.entities:
            if entity.name == name:
                return entity
        return None

    def find_relationship(self, source: str, target: str) -> Optional[Relationship]:
        for rel in self.relationships:
            if rel.source == source and rel.target == target:
                return rel
        return None


class Clarification(BaseModel):
    question: str
    options: list[str] = []


class ClarificationAnswer(BaseModel):
    question: str
    answer: str


# --- Pending edits ---


class AttributeUpdate(BaseModel):
    type: Literal["attribute"] = "attribute"
    entity: str
    attribute: str
    value: str


class RelationshipUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["relationship"] = "relationship"
    source: str
    target: str
    old_label: str = Field(alias="oldLabel")
    new_label: str = Field(alias="newLabel")


GraphUpdate = Annotated[Union[AttributeUpdate, RelationshipUpdate], Field(discriminator="type")]


# --- Provider configuration ---


class ProviderConfig(BaseModel):
    """Passed by value into every operation; never mutated by the core."""
    model_config = ConfigDict(frozen=True)

    provider: ProviderId
    model: str
    api_keys: dict[ProviderId, str] = {}
    base_url: Optional[str] = None

    def user_key(self) -> str:
        return (self.api_keys.get(self.provider) or "").strip()


class ModelOption(BaseModel):
    id: str
    name: str
    description: str = ""
    supports_tools: bool = False
    is_recommended: bool = False


class ConnectionCheck(BaseModel):
    success: bool
    message: str


class ContentResult(BaseModel):
    mode: Mode
    images: list[str] = []  # data URIs
    story: Optional[str] = None
    video_uri: Optional[str] = None
