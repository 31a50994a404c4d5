from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class PlyMessage:
    offset: int
    token: str | None
    text: str
    timestamp: int | None = None


@dataclass(frozen=True)
class MessagePlyList:
    name: str | None
    messages: list[PlyMessage] = field(default_factory=list)
    token: str | None = None


@dataclass(frozen=True)
class RhizomeBundle:
    manifest_id: str
    version: int
    token: str | None = None
    service: str | None = None
    name: str | None = None
    sender: str | None = None
    recipient: str | None = None
    author: str | None = None
    date: int | None = None
    filesize: int | None = None

    def display_name(self) -> str:
        if self.name:
            return self.name
        who = self.author or self.sender or self.manifest_id
        return f"{who[:12]}*"


@dataclass(frozen=True)
class RhizomeBundleList:
    bundles: list[RhizomeBundle] = field(default_factory=list)
    token: str | None = None
