"""Tool specs: the guidance bundles the AI provider works from.

A user enrolls in tools; processing only runs the tools that are both
enrolled and applicable to the thought.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set, Tuple

from mindnote.types import Thought

BASE_TOOL_ID = "thoughts"

BASE_GUIDANCE = (
    "Only act when the thought clearly warrants the tool.",
    "Avoid inventing details that are not present in the thought.",
)


@dataclass(frozen=True)
class ToolSpec:
    id: str
    title: str
    description: str
    primary_tags: Tuple[str, ...] = ()
    guidance: Tuple[str, ...] = field(default=BASE_GUIDANCE)

    def render(self) -> str:
        lines = [
            f"Tool: {self.title} ({self.id})",
            f"Description: {self.description}",
            f"Primary tags: {', '.join(self.primary_tags)}",
            "Guidance:",
        ]
        lines.extend(f"{i}. {item}" for i, item in enumerate(self.guidance, start=1))
        return "\n".join(lines)


DEFAULT_TOOL_SPECS: Tuple[ToolSpec, ...] = (
    ToolSpec(
        id=BASE_TOOL_ID,
        title="Thought Processing",
        description=(
            "General purpose processing for everyday thoughts. Enhance clarity, "
            "add helpful tags, and surface actionable follow-ups."
        ),
        primary_tags=("processed",),
        guidance=BASE_GUIDANCE
        + (
            "Favor suggestions over auto actions unless the need is explicit.",
            "Add relationship links only when a specific person is named.",
        ),
    ),
    ToolSpec(
        id="tasks",
        title="Tasks",
        description="Turn concrete next steps into tasks.",
        primary_tags=("tool-tasks",),
    ),
    ToolSpec(
        id="projects",
        title="Projects",
        description="Connect thoughts to the projects they move forward.",
        primary_tags=("tool-projects",),
    ),
    ToolSpec(
        id="goals",
        title="Goals",
        description="Connect thoughts to longer-term goals.",
        primary_tags=("tool-goals",),
    ),
    ToolSpec(
        id="relationships",
        title="Relationships",
        description="Notice the people a thought is about.",
        primary_tags=("tool-relationships",),
    ),
    ToolSpec(
        id="moodtracker",
        title="Mood Tracker",
        description="Capture how the writer is feeling.",
        primary_tags=("tool-mood",),
    ),
    ToolSpec(
        id="cbt",
        title="CBT Processing",
        description="Reframe unhelpful thinking patterns.",
        primary_tags=("cbt", "cbt-processed"),
    ),
)


class ToolRegistry:
    """Lookup of known tool specs by id."""

    def __init__(self, specs: Iterable[ToolSpec] = DEFAULT_TOOL_SPECS):
        self._specs: Dict[str, ToolSpec] = {spec.id: spec for spec in specs}

    def __contains__(self, tool_id: str) -> bool:
        return tool_id in self._specs

    def all(self) -> List[ToolSpec]:
        return list(self._specs.values())

    def get_many(self, tool_ids: Iterable[str]) -> List[ToolSpec]:
        """Known specs for the given ids, in a stable order. Unknown ids are skipped."""
        return [self._specs[tid] for tid in sorted(set(tool_ids)) if tid in self._specs]

    def render_guidance(self, tool_ids: Iterable[str]) -> str:
        return "\n\n---\n\n".join(spec.render() for spec in self.get_many(tool_ids))


class TagToolSpecResolver:
    """Picks tools by tag: the base tool always applies, others when their tags are on the thought."""

    def __init__(self, registry: ToolRegistry = None):
        self.registry = registry or ToolRegistry()

    def resolve_applicable_tool_ids(self, thought: Thought, enrolled_tool_ids: Set[str]) -> Set[str]:
        tags = {t.lower() for t in thought.tags}
        applicable = set()
        for spec in self.registry.all():
            if spec.id == BASE_TOOL_ID or tags.intersection(spec.primary_tags):
                applicable.add(spec.id)
        return applicable & set(enrolled_tool_ids)
