from typing import Dict, Any, List, Callable, Generic, Mapping, Tuple, TypeVar
from numbers import Number
import re
import structlog

from promptwire.domain.errors import TemplateBindingError

logger = structlog.get_logger(__name__)

Input = TypeVar("Input")

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def _stringify(name: str, value: Any) -> str:
    """Convert a projected value into placeholder text"""

    if isinstance(value, str):
        return value
    if isinstance(value, Number) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value):
        return "\n".join(value)

    raise TemplateBindingError(
        f"Placeholder '{name}' got unsupported value of type {type(value).__name__}"
    )


class PromptTemplate(Generic[Input]):
    """A template paired with the projection that fills its placeholders"""

    __slots__ = ("_template", "_project", "_placeholders")

    def __init__(self, template: str, project: Callable[[Input], Mapping[str, Any]]):
        if not isinstance(template, str):
            raise TemplateBindingError("Prompt template must be a string")
        if not callable(project):
            raise TemplateBindingError("Prompt projection must be callable")

        names: List[str] = []
        for match in PLACEHOLDER_PATTERN.finditer(template):
            if match.group(1) not in names:
                names.append(match.group(1))

        self._template = template
        self._project = project
        self._placeholders: Tuple[str, ...] = tuple(names)

    @property
    def template(self) -> str:
        return self._template

    @property
    def placeholders(self) -> Tuple[str, ...]:
        """Placeholder names in order of first appearance"""
        return self._placeholders

    def render(self, values: Mapping[str, Any]) -> str:
        """Substitute placeholders from a ready mapping"""

        if not isinstance(values, Mapping):
            raise TemplateBindingError(
                f"Projection must return a mapping, got {type(values).__name__}"
            )

        missing = [name for name in self._placeholders if values.get(name) is None]
        if missing:
            raise TemplateBindingError(
                f"No value for placeholder(s): {', '.join(missing)}",
                missing=missing
            )

        rendered: Dict[str, str] = {
            name: _stringify(name, values[name]) for name in self._placeholders
        }

        unused = [key for key in values if key not in rendered]
        if unused:
            logger.debug("Projection returned unused values", unused=unused)

        # Single pass, substituted text is never scanned again
        return PLACEHOLDER_PATTERN.sub(lambda match: rendered[match.group(1)], self._template)

    def __call__(self, input: Input) -> str:
        """Project the input and render the prompt"""

        prompt = self.render(self._project(input))

        logger.debug(
            "Compiled prompt",
            placeholders=len(self._placeholders),
            length=len(prompt)
        )

        return prompt

    def __repr__(self) -> str:
        return f"PromptTemplate(placeholders={list(self._placeholders)!r})"


def create_prompt(
    template: str,
    project: Callable[[Input], Mapping[str, Any]]
) -> PromptTemplate[Input]:
    """Compile a template and its projection into a prompt function"""

    return PromptTemplate(template, project)
