"""Pydantic models for the read side: blocking status and projected trees."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class BlockerInfo(BaseModel):
    """One direct blocker of an action."""

    id: str
    completed: bool


class BlockingStatus(BaseModel):
    """Derived blocked state of an action."""

    blocked: bool = False
    blockers: list[BlockerInfo] = Field(default_factory=list)


class ProjectNode(BaseModel):
    id: str
    name: str
    position: int
    status: str
    type: str = "parallel"


class TreeNode(BaseModel):
    """One entity in a projected tree, with its children in display order."""

    id: str
    kind: str
    label: str
    position: int
    parent_id: Optional[str] = None
    depth: int = 0
    status: Optional[str] = None
    blocking: Optional[BlockingStatus] = None  # actions only
    projects: list[ProjectNode] = Field(default_factory=list)  # folders only
    attributes: dict[str, Any] = Field(default_factory=dict)
    children: list[TreeNode] = Field(default_factory=list)

    def walk(self) -> list["TreeNode"]:
        """This node and all of its descendants, pre-order."""
        out = [self]
        for child in self.children:
            out.extend(child.walk())
        return out


TreeNode.model_rebuild()
