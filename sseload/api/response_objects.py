from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Card:
    id: str
    content: str = ""
    column_id: str = ""
    group_id: str = ""
    order: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "Card":
        return cls(
            id=str(data.get("id", "")),
            content=data.get("content") or "",
            column_id=data.get("columnId") or data.get("column_id") or "",
            group_id=data.get("groupId") or data.get("group_id") or "",
            order=int(data.get("order") or 0),
        )

    @property
    def grouped(self) -> bool:
        return self.group_id != ""


@dataclass
class Column:
    id: str
    name: str = ""
    order: int = 0
    cards: list[Card] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Column":
        column = cls(
            id=str(data.get("id", "")),
            name=data.get("name") or "",
            order=int(data.get("order") or 0),
            cards=[Card.from_dict(c) for c in data.get("cards") or []],
        )
        for card in column.cards:
            card.column_id = card.column_id or column.id
        return column


@dataclass
class Scene:
    id: str
    title: str = ""
    mode: str = ""
    flags: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Scene":
        return cls(
            id=str(data.get("id", "")),
            title=data.get("title") or "",
            mode=data.get("mode") or "",
            flags=list(data.get("flags") or []),
        )

    def has_flag(self, flag: str) -> bool:
        return flag in self.flags


@dataclass
class Series:
    id: str
    name: str = ""
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "Series":
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name") or "",
            description=data.get("description") or "",
        )


@dataclass
class Board:
    id: str
    name: str = ""
    series_id: str = ""
    status: str = ""
    current_scene_id: str = ""
    columns: list[Column] = field(default_factory=list)
    scenes: list[Scene] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Board":
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name") or "",
            series_id=data.get("seriesId") or "",
            status=data.get("status") or "",
            current_scene_id=data.get("currentSceneId") or "",
            columns=[Column.from_dict(c) for c in data.get("columns") or []],
            scenes=[Scene.from_dict(s) for s in data.get("scenes") or []],
        )

    @property
    def column_ids(self) -> list[str]:
        return [column.id for column in self.columns]

    @property
    def cards(self) -> list[Card]:
        return [card for column in self.columns for card in column.cards]

    @property
    def current_scene(self) -> Optional[Scene]:
        return next((s for s in self.scenes if s.id == self.current_scene_id), None)

    def column(self, column_id: str) -> Optional[Column]:
        return next((c for c in self.columns if c.id == column_id), None)
