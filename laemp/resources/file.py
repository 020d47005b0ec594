"""
Files laemp writes or edits under /etc, /var/www and the Moodle tree.

Kinds:
- File: whole-file content, inline or from a bundled template
  with mode and ownership
- Directories (ensure="directory") and symbolic links (ensure="link")
- FileValue: locked regex substitution of a single config value
- FileBlock: locked insertion of a block before an anchor line
"""

import posixpath
import re
from typing import Any, Callable, Dict, Optional, Union

from laemp.core.errors import DependencyError, DetectionError
from laemp.core.resource import Action, Plan, Resource
from laemp.logging import get_logger
from laemp.template import render_resource

logger = get_logger(__name__)


class File(Resource):
    """
    A file, directory or symlink owned entirely by laemp.

    Examples:
        # Rendered from a bundled template
        File("/etc/nginx/nginx.conf",
             template="nginx.conf.j2",
             substitutions={"web_user": "www-data", "web_group": "www-data"},
             backup="/etc/nginx/nginx.conf.backup")

        # Directory
        File("/home/moodle/moodledata", ensure="directory",
             owner="www-data", group="www-data", mode=0o777)

        # Symbolic link
        File("/etc/nginx/sites-enabled/site.conf", ensure="link",
             target="/etc/nginx/sites-available/site.conf")
    """

    def __init__(
        self,
        path: str,
        content: Optional[str] = None,
        template: Optional[str] = None,
        substitutions: Optional[Dict[str, str]] = None,
        ensure: str = "file",
        target: Optional[str] = None,
        mode: Optional[int] = None,
        owner: Optional[str] = None,
        group: Optional[str] = None,
        recurse: bool = False,
        backup: Optional[str] = None,
        **options,
    ):
        """
        Args:
            path: Absolute path on the host
            content: Literal content; wins over template
            template: Name of a template in laemp/templates
            substitutions: Template placeholder values
            ensure: "file", "directory", "link" or "absent"
            target: Link target (ensure="link")
            mode: Permission bits, 0o644 style
            owner: Owner username
            group: Group name
            recurse: Apply owner and group to directory contents too; the mode
                is only ever set on the path itself
            backup: Copy the pre-existing file here once before the first overwrite
        """
        super().__init__(path, **options)

        if ensure not in ("file", "directory", "link", "absent"):
            raise ValueError(f"Invalid ensure '{ensure}'")
        if ensure == "link" and not target:
            raise ValueError("File with ensure='link' requires a target")

        self.path = path
        self.content = content
        self.template = template
        self.substitutions = substitutions or {}
        self.kind = ensure
        self.target = target
        self.mode = mode
        self.owner = owner
        self.group = group
        self.recurse = recurse
        self.backup = backup

    def resource_type(self) -> str:
        return "file"

    def check(self, ctx) -> Dict[str, Any]:
        state = {
            "exists": False,
            "type": None,
            "content": None,
            "mode": None,
            "owner": None,
            "group": None,
            "target": None,
        }

        info = ctx.runner.stat(self.path)
        if info is None:
            return state

        state["exists"] = True
        state["mode"] = info.mode
        state["owner"] = info.owner
        state["group"] = info.group

        if info.is_link:
            state["type"] = "link"
            state["target"] = ctx.runner.query(["readlink", self.path]).output.strip()
        elif info.is_dir:
            state["type"] = "directory"
        else:
            state["type"] = "file"
            if self.content is not None or self.template is not None:
                state["content"] = ctx.runner.read_file(self.path)

        return state

    def desired_content(self) -> Optional[str]:
        if self.content is not None:
            return self.content
        if self.template is not None:
            return render_resource(self.template, self.substitutions)
        return None

    def desired_state(self) -> Dict[str, Any]:
        state = {"exists": self.kind != "absent"}
        if self.kind == "absent":
            return state

        state["type"] = self.kind
        if self.kind == "file":
            state["content"] = self.desired_content()
        if self.kind == "link":
            state["target"] = self.target
            return state

        if self.mode is not None:
            state["mode"] = self.mode
        if self.owner is not None:
            state["owner"] = self.owner
        if self.group is not None:
            state["group"] = self.group
        return state

    def apply(self, plan: Plan, ctx) -> None:
        if plan.action == Action.DELETE:
            ctx.runner.run(["rm", "-rf", self.path], mutating=True)
            return

        fields = set(plan.changed_fields())

        if plan.action == Action.UPDATE and "type" in fields:
            # wrong kind of object at this path
            ctx.runner.run(["rm", "-rf", self.path], mutating=True)
            plan = Plan(action=Action.CREATE)

        if self.kind == "directory":
            if plan.action == Action.CREATE:
                ctx.runner.run(["mkdir", "-p", self.path], mutating=True)
            self._set_metadata(ctx, plan, fields)
        elif self.kind == "link":
            ctx.runner.run(["ln", "-sfn", self.target, self.path], mutating=True)
        else:
            self._apply_file(ctx, plan, fields)

    def _apply_file(self, ctx, plan: Plan, fields) -> None:
        if plan.action == Action.CREATE or "content" in fields:
            parent = posixpath.dirname(self.path)
            if parent and not ctx.runner.file_exists(parent):
                ctx.runner.run(["mkdir", "-p", parent], mutating=True)

            if self.backup and plan.action == Action.UPDATE and not ctx.runner.file_exists(self.backup):
                ctx.runner.run(["cp", "-p", self.path, self.backup], mutating=True)

            content = self._desired_state.get("content") or ""
            mode = self.mode if self.mode is not None else (self._actual_state.get("mode") or 0o644)
            ctx.runner.write_file(self.path, content, mode=mode, owner=self.owner, group=self.group)
            return

        self._set_metadata(ctx, plan, fields)

    def _set_metadata(self, ctx, plan: Plan, fields) -> None:
        """Set owner, group and mode where they differ. Only ownership recurses."""
        create = plan.action == Action.CREATE
        if (self.owner or self.group) and (create or "owner" in fields or "group" in fields or self.recurse):
            ctx.runner.chown(self.path, self.owner, self.group, recurse=self.recurse)
        if self.mode is not None and (create or "mode" in fields):
            ctx.runner.chmod(self.path, self.mode)

    def describe(self, plan: Plan) -> str:
        if self.description:
            return self.description
        if plan.action == Action.DELETE:
            return f"remove {self.path}"
        if self.kind == "directory":
            return f"create directory {self.path}" if plan.action == Action.CREATE \
                else f"fix permissions of {self.path}"
        if self.kind == "link":
            return f"link {self.path} -> {self.target}"
        return f"write {self.path}" if plan.action == Action.CREATE else f"update {self.path}"


Replacement = Union[str, Callable[[], str]]


class FileValue(Resource):
    """
    Replace one value in an existing config file, under an exclusive lock.

    The file is only rewritten when the desired value is absent. If neither
    the desired value nor the pattern to replace can be found, the state is
    ambiguous and a DetectionError is raised instead of guessing.

    Examples:
        FileValue("/var/www/html/site/config.php",
                  pattern=r"\\$CFG->dbhost\\s*=\\s*'localhost';",
                  replacement="$CFG->dbhost = 'db.internal';")

        # Replacement computed at apply time (e.g. a generated secret)
        FileValue(config_php,
                  pattern=r"\\$CFG->dbpass\\s*=\\s*'password';",
                  replacement=lambda: f"$CFG->dbpass = '{secret()}';",
                  present=r"\\$CFG->dbpass\\s*=\\s*'(?!password')")
    """

    def __init__(
        self,
        path: str,
        pattern: str,
        replacement: Replacement,
        present: Optional[str] = None,
        key: Optional[str] = None,
        **options,
    ):
        """
        Args:
            path: File to edit
            pattern: Regex matching the text to replace
            replacement: Literal replacement, or a callable producing it
            present: Regex proving the desired value is already set
                (default: the literal replacement)
            key: Name used in the resource id (default: the pattern)
        """
        super().__init__(f"{path}:{key or pattern}", **options)

        if present is None:
            if callable(replacement):
                raise ValueError("FileValue with a computed replacement requires a present pattern")
            present = re.escape(replacement)

        self.path = path
        self.pattern = re.compile(pattern, re.MULTILINE)
        self.replacement = replacement
        self.present = re.compile(present, re.MULTILINE)

    def resource_type(self) -> str:
        return "value"

    def _value_set(self, content: str) -> bool:
        if self.present.search(content):
            return True
        if self.pattern.search(content):
            return False
        raise DetectionError(
            f"Cannot tell whether {self.path} is configured: neither "
            f"'{self.present.pattern}' nor '{self.pattern.pattern}' was found"
        )

    def check(self, ctx) -> Dict[str, Any]:
        content = ctx.runner.read_file(self.path)
        if content is None:
            return {"exists": False}
        return {"exists": True, "value_set": self._value_set(content)}

    def desired_state(self) -> Dict[str, Any]:
        return {"exists": True, "value_set": True}

    def apply(self, plan: Plan, ctx) -> None:
        if not ctx.runner.file_exists(self.path):
            if ctx.dry_run:
                return
            raise DependencyError(f"{self.path} does not exist")

        with ctx.runner.lock(self.path):
            content = ctx.runner.read_file(self.path) or ""
            if self._value_set(content):
                logger.verbose(f"Value {self.present.pattern} already set in {self.path}")
                return

            value = self.replacement() if callable(self.replacement) else self.replacement
            updated = self.pattern.sub(lambda _: value, content, count=1)
            info = ctx.runner.stat(self.path)
            ctx.runner.write_file(self.path, updated, mode=info.mode, owner=info.owner, group=info.group)
            logger.verbose(f"Replaced {self.pattern.pattern} in {self.path}")

    def describe(self, plan: Plan) -> str:
        if self.description:
            return self.description
        return f"set {self.name}"


class FileBlock(Resource):
    """
    Insert a block of text once, before an anchor line (or at the end).

    Example:
        FileBlock(config_php,
                  marker="CFG->xsendfile",
                  block=render_resource("moodle-xsendfile.php.j2", subs),
                  anchor="require_once(__DIR__ . '/lib/setup.php');")
    """

    def __init__(
        self,
        path: str,
        marker: str,
        block: str,
        anchor: Optional[str] = None,
        **options,
    ):
        """
        Args:
            path: File to edit
            marker: Literal text whose presence means the block is in place
            block: Text to insert
            anchor: Literal text of the line to insert before (None = append)
        """
        super().__init__(f"{path}:{marker}", **options)
        self.path = path
        self.marker = marker
        self.block = block
        self.anchor = anchor

    def resource_type(self) -> str:
        return "block"

    def _block_present(self, content: str) -> bool:
        if self.marker in content:
            return True
        if self.anchor is not None and self.anchor not in content:
            raise DetectionError(f"Anchor '{self.anchor}' not found in {self.path}")
        return False

    def check(self, ctx) -> Dict[str, Any]:
        content = ctx.runner.read_file(self.path)
        if content is None:
            return {"exists": False}
        return {"exists": True, "block": self._block_present(content)}

    def desired_state(self) -> Dict[str, Any]:
        return {"exists": True, "block": True}

    def apply(self, plan: Plan, ctx) -> None:
        if not ctx.runner.file_exists(self.path):
            if ctx.dry_run:
                return
            raise DependencyError(f"{self.path} does not exist")

        with ctx.runner.lock(self.path):
            content = ctx.runner.read_file(self.path) or ""
            if self._block_present(content):
                return

            block = self.block if self.block.endswith("\n") else self.block + "\n"
            if self.anchor is None:
                if content and not content.endswith("\n"):
                    content += "\n"
                updated = content + block
            else:
                lines = content.splitlines(keepends=True)
                index = next(i for i, line in enumerate(lines) if self.anchor in line)
                updated = "".join(lines[:index]) + block + "".join(lines[index:])

            info = ctx.runner.stat(self.path)
            ctx.runner.write_file(self.path, updated, mode=info.mode, owner=info.owner, group=info.group)

    def describe(self, plan: Plan) -> str:
        if self.description:
            return self.description
        return f"add {self.marker} block to {self.path}"
