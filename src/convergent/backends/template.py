"""Template backend: files whose content is a rendered Jinja2 template."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import jinja2

from convergent.backends.file import FileBackend
from convergent.backends.sources import ArtifactSource
from convergent.core.errors import RenderError
from convergent.resources.models import ResourceDeclaration


class TemplateBackend(FileBackend):
    """
    Renders `source` (or inline `content`) with the declaration's variables.

    Undefined variables are errors rather than empty strings, so a missing
    value never produces a silently broken config file.
    """

    kind = "template"

    def __init__(
        self,
        source: ArtifactSource,
        search_path: Iterable[Path],
        backup_count: int = 5,
        backup_dir: Path | None = None,
    ) -> None:
        super().__init__(source, backup_count=backup_count, backup_dir=backup_dir)
        self.env = jinja2.Environment(
            loader=jinja2.FileSystemLoader([str(p) for p in search_path]),
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )

    def desired_content(self, decl: ResourceDeclaration) -> bytes | None:
        variables = dict(decl.get("variables") or {})
        source = str(decl.get("source"))
        try:
            if decl.get("content") is not None:
                template = self.env.from_string(str(decl.get("content")))
            elif Path(source).is_absolute():
                template = self.env.from_string(Path(source).read_text(encoding="utf-8"))
            else:
                template = self.env.get_template(source)
            rendered = template.render(**variables)
        except jinja2.TemplateNotFound as e:
            raise RenderError(self.kind, decl.identity, f"template not found: {e.name}") from e
        except UnicodeDecodeError as e:
            raise RenderError(
                self.kind, decl.identity, f"template is not valid UTF-8: {e.reason}"
            ) from e
        except OSError as e:
            raise RenderError(self.kind, decl.identity, f"template not found: {source}") from e
        except jinja2.TemplateSyntaxError as e:
            raise RenderError(
                self.kind, decl.identity, f"syntax error at line {e.lineno}: {e.message}"
            ) from e
        except jinja2.TemplateError as e:
            raise RenderError(self.kind, decl.identity, str(e)) from e
        return rendered.encode("utf-8")
