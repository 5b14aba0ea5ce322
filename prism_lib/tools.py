"""Static tool catalog and the handlers behind ``tools/call``."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Sequence

from jsonschema import Draft202012Validator
from jsonschema.exceptions import best_match
from mcp import types

from .errors import InvalidParams, MethodNotFound
from .projects import find_owned_project
from .records import RULE_CATEGORIES, Rule
from .search import MAX_LIMIT, TranscriptSearchEngine
from .store import RULES, DocumentStore

RULE_PREVIEW_CHARS = 200
STYLING = "styling"

_PROJECT_ID_SCHEMA = {"type": "string", "description": "Project slug or ID"}


@dataclass(frozen=True)
class ToolContext:
    user_id: str
    store: DocumentStore
    search: TranscriptSearchEngine


ToolHandler = Callable[[ToolContext, Mapping[str, Any]], str]


@dataclass(frozen=True)
class ToolDefinition:
    descriptor: types.Tool
    handler: ToolHandler

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def required(self) -> Sequence[str]:
        return tuple(self.descriptor.inputSchema.get("required", ()))


def _require_text(arguments: Mapping[str, Any], key: str, *, strip: bool = True) -> str:
    value = arguments.get(key)
    if not isinstance(value, str) or not value.strip():
        raise InvalidParams(f"'{key}' must be a non-empty string")
    return value.strip() if strip else value


def _optional_limit(arguments: Mapping[str, Any]) -> int | None:
    value = arguments.get("limit")
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= MAX_LIMIT:
        raise InvalidParams(f"'limit' must be an integer between 1 and {MAX_LIMIT}")
    return value


def _one_line(text: str) -> str:
    return " ".join(text.split())


def _project_rules(context: ToolContext, project_id: str, category: str | None = None) -> List[Rule]:
    filter: Dict[str, Any] = {"projectId": project_id}
    if category:
        filter["category"] = category
    documents = context.store.collection(RULES).find(filter, sort=[("priority", 1)])
    rules = [rule for rule in (Rule.from_document(doc) for doc in documents) if rule and rule.is_active]
    return sorted(rules, key=lambda rule: rule.priority)


def search_transcript(context: ToolContext, arguments: Mapping[str, Any]) -> str:
    project_ref = _require_text(arguments, "projectId")
    query = _require_text(arguments, "query", strip=False)
    limit = _optional_limit(arguments)
    project = find_owned_project(context.store, context.user_id, project_ref)
    response = context.search.search(project, query, limit)
    if not response.results:
        return f'No matches found for "{query}" in {project.name}.'
    shown = sum(len(hit.matches) for hit in response.results)
    lines = [
        f'Found {shown} match(es) in {response.total_videos} transcript(s) for "{query}" in {project.name}:',
        "",
    ]
    for hit in response.results:
        label = hit.transcript.title
        if hit.transcript.video_id:
            label = f"{label} [{hit.transcript.video_id}]"
        for match in hit.matches:
            lines.append(f"- {label}: {_one_line(match.text)}")
        if hit.total_matches > len(hit.matches):
            lines.append(f"  (showing {len(hit.matches)} of {hit.total_matches} matches in {hit.transcript.title})")
    return "\n".join(lines)


def get_brand_rules(context: ToolContext, arguments: Mapping[str, Any]) -> str:
    project = find_owned_project(context.store, context.user_id, _require_text(arguments, "projectId"))
    rules = _project_rules(context, project.id, STYLING)
    if not rules:
        return f"No styling rules configured for {project.name}."
    sections = [f"# {project.name} Brand Rules"]
    for rule in rules:
        sections.append(f"## {rule.name} (priority {rule.priority})\n{rule.content.strip()}")
    return "\n\n".join(sections)


def list_rules(context: ToolContext, arguments: Mapping[str, Any]) -> str:
    project = find_owned_project(context.store, context.user_id, _require_text(arguments, "projectId"))
    category = arguments.get("category")
    if category is not None and category not in RULE_CATEGORIES:
        raise InvalidParams(f"'category' must be one of: {', '.join(RULE_CATEGORIES)}")
    rules = _project_rules(context, project.id, category)
    if not rules:
        return "No rules found. Create rules in the Prism dashboard."
    sections = [f"# {project.name} Rules", f"Found {len(rules)} rule(s):"]
    for rule in rules:
        preview = rule.content.strip()
        if len(preview) > RULE_PREVIEW_CHARS:
            preview = preview[:RULE_PREVIEW_CHARS].rstrip() + "..."
        sections.append(f"## {rule.name}\nCategory: {rule.category} | Priority: {rule.priority}\n{preview}")
    return "\n\n".join(sections)


TOOLS: Sequence[ToolDefinition] = (
    ToolDefinition(
        descriptor=types.Tool(
            name="search-transcript",
            description="Search video transcripts within a project for a literal phrase.",
            inputSchema={
                "type": "object",
                "properties": {
                    "projectId": _PROJECT_ID_SCHEMA,
                    "query": {"type": "string", "description": "Text to search for (case-insensitive)"},
                    "limit": {
                        "type": "integer",
                        "minimum": 1,
                        "maximum": MAX_LIMIT,
                        "description": "Maximum number of transcripts to return",
                    },
                },
                "required": ["projectId", "query"],
            },
        ),
        handler=search_transcript,
    ),
    ToolDefinition(
        descriptor=types.Tool(
            name="get-brand-rules",
            description="Get the brand styling rules for a project.",
            inputSchema={
                "type": "object",
                "properties": {"projectId": _PROJECT_ID_SCHEMA},
                "required": ["projectId"],
            },
        ),
        handler=get_brand_rules,
    ),
    ToolDefinition(
        descriptor=types.Tool(
            name="list-rules",
            description="List the active rules for a project, highest priority first.",
            inputSchema={
                "type": "object",
                "properties": {
                    "projectId": _PROJECT_ID_SCHEMA,
                    "category": {
                        "type": "string",
                        "enum": list(RULE_CATEGORIES),
                        "description": "Optional category filter",
                    },
                },
                "required": ["projectId"],
            },
        ),
        handler=list_rules,
    ),
)

TOOLS_BY_NAME: Dict[str, ToolDefinition] = {tool.name: tool for tool in TOOLS}
_VALIDATORS: Dict[str, Draft202012Validator] = {
    tool.name: Draft202012Validator(tool.descriptor.inputSchema) for tool in TOOLS
}
TOOL_DESCRIPTORS: List[Dict[str, Any]] = [
    tool.descriptor.model_dump(mode="json", by_alias=True, exclude_none=True) for tool in TOOLS
]


def get_tool(name: Any) -> ToolDefinition:
    if not isinstance(name, str) or name not in TOOLS_BY_NAME:
        raise MethodNotFound(f"Unknown tool: {name}")
    return TOOLS_BY_NAME[name]


def validate_arguments(tool: ToolDefinition, arguments: Mapping[str, Any]) -> None:
    """Check ``arguments`` against the tool's published ``inputSchema``."""

    missing = [key for key in tool.required if arguments.get(key) in (None, "")]
    if missing:
        raise InvalidParams(f"Missing required argument(s) for {tool.name}: {', '.join(missing)}")
    error = best_match(_VALIDATORS[tool.name].iter_errors(dict(arguments)))
    if error is not None:
        location = ".".join(str(part) for part in error.absolute_path) or "arguments"
        raise InvalidParams(f"Invalid {location} for {tool.name}: {error.message}")
