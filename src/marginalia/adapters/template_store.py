import logging
from pathlib import Path

import yaml

from ..core.errors import TemplateError, TemplateNotFound
from ..core.model import Template
from ..core.ports import TemplateSource
from ..core.templates import DEFAULT_TEMPLATES, default_template, template_id
from .fs_storage import FsStorage
from .yaml_codec import YamlFrontmatter

logger = logging.getLogger(__name__)


class TemplateStore(TemplateSource):
    """
    Built-in templates plus user templates kept as `<id>.md` files in a
    directory. Frontmatter holds name and description; the body is the
    template content. Built-ins cannot be overwritten, changed or removed.
    """

    def __init__(self, root: Path, fm: YamlFrontmatter | None = None):
        self.storage = FsStorage(root)
        self.fm = fm or YamlFrontmatter()

    def _decode(self, id: str, raw: str) -> Template:
        meta, body = self.fm.decode(raw)
        name = meta.get("name")
        return Template(
            id=id,
            name=name if isinstance(name, str) and name.strip() else id,
            description=str(meta.get("description") or ""),
            content=body,
        )

    def _encode(self, template: Template) -> str:
        meta = {"name": template.name}
        if template.description:
            meta["description"] = template.description
        return self.fm.encode(meta) + template.content

    def _read(self, id: str) -> Template | None:
        try:
            raw = self.storage.read_raw(id)
            if raw is None:
                return None
            return self._decode(id, raw)
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
            raise TemplateError(f"Template '{id}' is unreadable: {e}") from e

    def _write(self, template: Template) -> None:
        try:
            self.storage.write_raw(template.id, self._encode(template))
        except OSError as e:
            raise TemplateError(f"Template '{template.id}' could not be written: {e}") from e

    def list(self) -> list[Template]:
        """Built-ins first, then custom templates by id. Unreadable files are skipped."""
        found = list(DEFAULT_TEMPLATES)
        for id in self.storage.list_all_ids():
            if default_template(id) is not None:
                continue
            try:
                template = self._read(id)
            except TemplateError as e:
                logger.warning("Skipping template: %s", e)
                continue
            if template is not None:
                found.append(template)
        return found

    def get(self, id: str) -> Template:
        template = default_template(id) or self._read(id)
        if template is None:
            raise TemplateNotFound(id)
        return template

    def save(self, name: str, content: str, description: str = "") -> Template:
        id = template_id(name)
        if not id:
            raise TemplateError(f"Template name {name!r} has no usable characters")
        if default_template(id) is not None or self.storage.exists(id):
            raise TemplateError(f"Template '{id}' already exists")
        template = Template(id=id, name=name.strip(), content=content, description=description)
        self._write(template)
        logger.info("Saved template %s", id)
        return template

    def update(
        self,
        id: str,
        name: str | None = None,
        content: str | None = None,
        description: str | None = None,
    ) -> Template:
        if default_template(id) is not None:
            raise TemplateError(f"Template '{id}' is built in and cannot be changed")
        current = self._read(id)
        if current is None:
            raise TemplateNotFound(id)
        template = Template(
            id=id,
            name=name.strip() if name is not None else current.name,
            content=content if content is not None else current.content,
            description=description if description is not None else current.description,
        )
        self._write(template)
        return template

    def delete(self, id: str) -> None:
        """Remove a custom template; unknown ids are a no-op."""
        if default_template(id) is not None:
            raise TemplateError(f"Template '{id}' is built in and cannot be deleted")
        try:
            self.storage.delete_raw(id)
        except OSError as e:
            raise TemplateError(f"Template '{id}' could not be deleted: {e}") from e
