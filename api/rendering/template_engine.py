"""Certificate template engine.

Certificate templates are administrator-authored HTML using a small
mustache-style dialect:

- ``{{name}}`` / ``{{course.title}}`` substitute a value (HTML-escaped)
- ``{{items.[0]}}`` and ``{{[first name]}}`` address segments literally;
  ``{{../title}}`` reads from the context outside the enclosing
  ``#each`` / ``#with``
- ``{{{name}}}`` substitutes without escaping
- ``{{formatDate issue_date}}`` calls one of the registered helpers
- ``{{#if cond}}...{{else}}...{{/if}}``, ``#unless``, ``#each`` and ``#with``
  blocks; helpers can be nested as sub-expressions: ``{{#if (gt hours 10)}}``
- ``{{! comment }}`` and ``{{!-- comment --}}`` are dropped

The dialect is translated to Jinja2 source and executed in a
``SandboxedEnvironment``. Template identifiers never become Jinja names: every
lookup goes through ``_lookup`` on the render data, so a template can only
reach the data it is given and the helpers below.

Missing data renders as an empty string, and so does an object printed
directly. Only malformed syntax raises ``TemplateRenderError``.

Not supported: partials, hash arguments, whitespace control (``~``),
decorators and ``@`` data variables on a parent scope (``@../index``).
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any

from babel import dates, numbers
from jinja2 import Template, TemplateError
from jinja2.sandbox import SandboxedEnvironment
from markupsafe import Markup

from schemas import TemplateValidationResult


class TemplateRenderError(Exception):
    """Raised when a template has malformed syntax or an invalid helper call."""


# Helper name -> number of arguments it takes
HELPER_ARITY: dict[str, int] = {
    "formatDate": 1,
    "formatNumber": 1,
    "uppercase": 1,
    "lowercase": 1,
    "eq": 2,
    "gt": 2,
    "lt": 2,
}

BLOCK_HELPERS = frozenset({"if", "unless", "each", "with"})
_BLOCK_KEYWORDS = BLOCK_HELPERS | {"else"}

_LITERALS: dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "undefined": None,
}

_TOKEN_RE = re.compile(
    r"""
    (?P<lparen>\()
    | (?P<rparen>\))
    | "(?P<dq>[^"]*)"
    | '(?P<sq>[^']*)'
    | (?P<number>-?\d+(?:\.\d+)?)(?![\w.])
    | (?P<path>@?(?:\.\./)*(?:[^\W\d][\w$-]*|\[[^\]]+\])
        (?:[./](?:[^\W\d][\w$-]*|\[[^\]]+\]))*)
    """,
    re.VERBOSE,
)

_MUSTACHE_RE = re.compile(r"\{\{([^}]+)\}\}")
_SEGMENT_RE = re.compile(r"\[([^\]]+)\]|([^./\[\]]+)")
_LONE_DAY_RE = re.compile(r"'[^']*'|(?<!d)d(?!d)")


# ============ Helpers ============


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float | Decimal) and not isinstance(value, bool)


def _coerce_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip()).date()
        except ValueError:
            return None
    return None


def _uppercase(value: Any) -> str:
    return str(value).upper() if value else ""


def _lowercase(value: Any) -> str:
    return str(value).lower() if value else ""


def _eq(a: Any, b: Any) -> bool:
    """Strict equality: numbers compare by value, everything else by type too."""
    if _is_number(a) and _is_number(b):
        return a == b
    return type(a) is type(b) and a == b


def _gt(a: Any, b: Any) -> bool:
    try:
        return bool(a > b)
    except TypeError:
        return False


def _lt(a: Any, b: Any) -> bool:
    try:
        return bool(a < b)
    except TypeError:
        return False


# ============ Runtime support for translated templates ============


def _lookup(context: Any, *segments: str) -> Any:
    value = context
    for segment in segments:
        if isinstance(value, Mapping):
            value = value.get(segment)
        elif isinstance(value, list | tuple | str) and segment == "length":
            value = len(value)
        elif isinstance(value, list | tuple) and segment.isdigit():
            index = int(segment)
            value = value[index] if index < len(value) else None
        else:
            return None
        if value is None:
            return None
    return value


def _iterate(value: Any) -> list[tuple[Any, Any]]:
    if isinstance(value, Mapping):
        return list(value.items())
    if isinstance(value, list | tuple):
        return list(enumerate(value))
    return []


def _truthy(value: Any) -> bool:
    if isinstance(value, Mapping):
        return True
    return bool(value)


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return str(int(value))
        return str(value.normalize())
    if isinstance(value, Mapping):
        return ""
    if isinstance(value, list | tuple):
        return ",".join(_stringify(item) for item in value)
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _raw(value: Any) -> Markup:
    return Markup(_stringify(value))


def _two_digit_day(pattern: str) -> str:
    """Pad the day of a CLDR date pattern: ``d 'de' MMMM`` -> ``dd 'de' MMMM``."""
    return _LONE_DAY_RE.sub(
        lambda m: "dd" if m.group() == "d" else m.group(), pattern
    )


# ============ Dialect -> Jinja translation ============


@dataclass
class _Scope:
    context: str
    key: str | None = None
    loop: str | None = None


@dataclass
class _Block:
    name: str
    offset: int
    scope_pushed: bool
    seen_else: bool = False


@dataclass(frozen=True)
class _Compiled:
    template: Template
    constants: tuple[Any, ...]


class _Translator:
    """Translate one dialect template into Jinja source plus a constant table.

    Literal text and string arguments go into the constant table so template
    content never has to be quoted into Jinja source.
    """

    def __init__(self, source: str) -> None:
        self.source = source
        self.parts: list[str] = []
        self.constants: list[Any] = []
        self.blocks: list[_Block] = []
        self.scopes: list[_Scope] = [_Scope(context="_root")]
        self.counter = 0

    def translate(self) -> str:
        source = self.source
        pos = 0
        text_start = 0
        while True:
            start = source.find("{{", pos)
            if start == -1:
                break

            if start > 0 and source[start - 1] == "\\":
                # \{{ renders a literal "{{"
                self._text(source[text_start : start - 1])
                self._text("{{")
                pos = text_start = start + 2
                continue

            self._text(source[text_start:start])

            if source.startswith("{{!--", start):
                end = self._find_close(source, "--}}", start + 5, start)
                pos = end + 4
            elif source.startswith("{{!", start):
                end = self._find_close(source, "}}", start + 3, start)
                pos = end + 2
            elif source.startswith("{{{", start):
                end = self._find_close(source, "}}}", start + 3, start)
                self._output(source[start + 3 : end].strip(), start, raw=True)
                pos = end + 3
            else:
                end = self._find_close(source, "}}", start + 2, start)
                self._tag(source[start + 2 : end].strip(), start)
                pos = end + 2
            text_start = pos

        self._text(source[text_start:])

        if self.blocks:
            block = self.blocks[-1]
            raise TemplateRenderError(
                f"Unclosed block '{{{{#{block.name}}}}}' "
                f"opened at offset {block.offset}"
            )
        return "".join(self.parts)

    @staticmethod
    def _find_close(source: str, marker: str, search_from: int, offset: int) -> int:
        end = source.find(marker, search_from)
        if end == -1:
            raise TemplateRenderError(f"Unterminated tag at offset {offset}")
        return end

    # ---- emission ----

    def _constant(self, value: Any) -> str:
        self.constants.append(value)
        return f"_const[{len(self.constants) - 1}]"

    def _next_id(self) -> int:
        self.counter += 1
        return self.counter

    def _text(self, chunk: str) -> None:
        if chunk:
            self.parts.append("{{ " + self._constant(Markup(chunk)) + " }}")

    def _output(self, body: str, offset: int, *, raw: bool = False) -> None:
        expression = self._expression(self._parse_params(body, offset), offset)
        wrapper = "_raw" if raw else "_out"
        self.parts.append(f"{{{{ {wrapper}({expression}) }}}}")

    # ---- tags ----

    def _tag(self, body: str, offset: int) -> None:
        if not body:
            raise TemplateRenderError(f"Empty tag at offset {offset}")

        if body in ("else", "^"):
            self._else(offset)
        elif body.startswith("else "):
            rest = body[5:].strip()
            if not rest.startswith("if "):
                raise TemplateRenderError(f"Invalid else clause at offset {offset}")
            self._else_if(rest[3:].strip(), offset)
        elif body[0] == "#":
            self._open_block(body[1:].strip(), offset)
        elif body[0] == "/":
            self._close_block(body[1:].strip(), offset)
        elif body[0] == "&":
            self._output(body[1:].strip(), offset, raw=True)
        elif body[0] == ">":
            raise TemplateRenderError(f"Partials are not supported (offset {offset})")
        elif body[0] in "^~*":
            raise TemplateRenderError(
                f"Unsupported tag '{{{{{body}}}}}' at offset {offset}"
            )
        else:
            self._output(body, offset)

    def _open_block(self, body: str, offset: int) -> None:
        name, _, rest = body.partition(" ")
        if name not in BLOCK_HELPERS:
            if name in HELPER_ARITY:
                raise TemplateRenderError(
                    f"'{name}' is not a block helper (offset {offset})"
                )
            raise TemplateRenderError(
                f"Unknown block helper '{name}' at offset {offset}"
            )

        params = self._parse_params(rest, offset)
        if len(params) != 1:
            raise TemplateRenderError(
                f"#{name} requires exactly one argument (offset {offset})"
            )
        argument = self._compile_node(params[0], offset)

        if name == "if":
            self.parts.append(f"{{% if _truthy({argument}) %}}")
            self.blocks.append(_Block(name, offset, scope_pushed=False))
        elif name == "unless":
            self.parts.append(f"{{% if not _truthy({argument}) %}}")
            self.blocks.append(_Block(name, offset, scope_pushed=False))
        elif name == "each":
            n = self._next_id()
            self.parts.append(
                f"{{% for _key{n}, _item{n} in _iterate({argument}) %}}"
                f"{{% set _loop{n} = loop %}}"
            )
            self.scopes.append(_Scope(f"_item{n}", key=f"_key{n}", loop=f"_loop{n}"))
            self.blocks.append(_Block(name, offset, scope_pushed=True))
        else:
            n = self._next_id()
            self.parts.append(
                f"{{% with _item{n} = {argument} %}}{{% if _truthy(_item{n}) %}}"
            )
            self.scopes.append(_Scope(f"_item{n}"))
            self.blocks.append(_Block(name, offset, scope_pushed=True))

    def _else(self, offset: int) -> None:
        block = self._current_block("{{else}}", offset)
        if block.seen_else:
            raise TemplateRenderError(f"Duplicate {{{{else}}}} at offset {offset}")
        block.seen_else = True
        if block.scope_pushed:
            self.scopes.pop()
            block.scope_pushed = False
        self.parts.append("{% else %}")

    def _else_if(self, body: str, offset: int) -> None:
        block = self._current_block("{{else if}}", offset)
        if block.name not in ("if", "unless") or block.seen_else:
            raise TemplateRenderError(f"Unexpected {{{{else if}}}} at offset {offset}")
        params = self._parse_params(body, offset)
        if len(params) != 1:
            raise TemplateRenderError(
                f"else if requires exactly one argument (offset {offset})"
            )
        argument = self._compile_node(params[0], offset)
        self.parts.append(f"{{% elif _truthy({argument}) %}}")

    def _current_block(self, tag: str, offset: int) -> _Block:
        if not self.blocks:
            raise TemplateRenderError(f"{tag} outside of a block at offset {offset}")
        return self.blocks[-1]

    def _close_block(self, name: str, offset: int) -> None:
        if not self.blocks:
            raise TemplateRenderError(
                f"Unexpected closing tag '{{{{/{name}}}}}' at offset {offset}"
            )
        block = self.blocks.pop()
        if block.name != name:
            raise TemplateRenderError(
                f"'{{{{#{block.name}}}}}' at offset {block.offset} "
                f"closed by '{{{{/{name}}}}}' at offset {offset}"
            )
        if block.scope_pushed:
            self.scopes.pop()

        if name in ("if", "unless"):
            self.parts.append("{% endif %}")
        elif name == "each":
            self.parts.append("{% endfor %}")
        else:
            self.parts.append("{% endif %}{% endwith %}")

    # ---- expressions ----

    def _parse_params(self, body: str, offset: int) -> list[Any]:
        tokens = self._tokenize(body, offset)
        params: list[Any] = []
        stack: list[list[Any]] = [params]
        for kind, value in tokens:
            if kind == "lparen":
                stack.append([])
            elif kind == "rparen":
                if len(stack) == 1:
                    raise TemplateRenderError(f"Unbalanced ')' at offset {offset}")
                group = stack.pop()
                stack[-1].append(self._subexpression(group, offset))
            else:
                stack[-1].append((kind, value))
        if len(stack) != 1:
            raise TemplateRenderError(f"Unbalanced '(' at offset {offset}")
        return params

    @staticmethod
    def _tokenize(body: str, offset: int) -> list[tuple[str, Any]]:
        tokens: list[tuple[str, Any]] = []
        pos = 0
        while pos < len(body):
            if body[pos].isspace():
                pos += 1
                continue
            match = _TOKEN_RE.match(body, pos)
            if match is None:
                if body[pos] == "=":
                    raise TemplateRenderError(
                        f"Hash arguments are not supported (offset {offset})"
                    )
                raise TemplateRenderError(
                    f"Unexpected character {body[pos]!r} in tag at offset {offset}"
                )
            kind = match.lastgroup
            text = match.group(kind)
            if kind in ("dq", "sq"):
                tokens.append(("lit", text))
            elif kind == "number":
                tokens.append(("lit", float(text) if "." in text else int(text)))
            elif kind == "path" and text in _LITERALS:
                tokens.append(("lit", _LITERALS[text]))
            else:
                tokens.append((kind, text))
            pos = match.end()
        return tokens

    @staticmethod
    def _subexpression(group: list[Any], offset: int) -> tuple[str, Any]:
        if not group or group[0][0] != "path":
            raise TemplateRenderError(f"Invalid sub-expression at offset {offset}")
        name = group[0][1]
        if name not in HELPER_ARITY:
            raise TemplateRenderError(f"Unknown helper '{name}' at offset {offset}")
        return _Translator._call(name, group[1:], offset)

    @staticmethod
    def _call(name: str, args: list[Any], offset: int) -> tuple[str, Any]:
        expected = HELPER_ARITY[name]
        if len(args) != expected:
            raise TemplateRenderError(
                f"Helper '{name}' expects {expected} argument(s), "
                f"got {len(args)} (offset {offset})"
            )
        return ("call", (name, args))

    def _expression(self, params: list[Any], offset: int) -> str:
        if not params:
            raise TemplateRenderError(f"Empty expression at offset {offset}")
        head = params[0]
        if head[0] == "path" and head[1] in HELPER_ARITY:
            return self._compile_node(self._call(head[1], params[1:], offset), offset)
        if len(params) == 1:
            return self._compile_node(head, offset)
        if head[0] == "path":
            raise TemplateRenderError(f"Unknown helper '{head[1]}' at offset {offset}")
        raise TemplateRenderError(f"Invalid expression at offset {offset}")

    def _compile_node(self, node: tuple[str, Any], offset: int) -> str:
        kind, value = node
        if kind == "lit":
            if value is None:
                return "none"
            if isinstance(value, bool):
                return "true" if value else "false"
            if isinstance(value, str):
                return self._constant(value)
            return repr(value)
        if kind == "path":
            return self._path(value, offset)
        name, args = value
        compiled = ", ".join(self._compile_node(arg, offset) for arg in args)
        return f"{name}({compiled})"

    def _path(self, path: str, offset: int) -> str:
        scope = self.scopes[-1]
        if path.startswith("@"):
            head, _, rest = path[1:].partition(".")
            if head == "root":
                return self._lookup_call("_root", rest)
            loop_scope = next((s for s in reversed(self.scopes) if s.loop), None)
            if head in ("index", "first", "last", "key"):
                if loop_scope is None:
                    return "none"
                if head == "key":
                    return loop_scope.key or "none"
                attribute = "index0" if head == "index" else head
                return f"{loop_scope.loop}.{attribute}"
            raise TemplateRenderError(
                f"Unknown data variable '@{head}' at offset {offset}"
            )
        depth = 0
        while path.startswith("../"):
            depth += 1
            path = path[3:]
        if depth:
            # Only #each and #with push a context, as in Handlebars
            if depth >= len(self.scopes):
                return "none"
            scope = self.scopes[-1 - depth]
        if path == "this":
            return scope.context
        if path.startswith("this.") or path.startswith("this/"):
            path = path[5:]
        return self._lookup_call(scope.context, path)

    def _lookup_call(self, context: str, path: str) -> str:
        if not path:
            return context
        segments = [
            bracketed or bare for bracketed, bare in _SEGMENT_RE.findall(path)
        ]
        args = ", ".join(self._constant(s) for s in segments)
        return f"_lookup({context}, {args})"


# ============ Engine ============

_DOCUMENT_HEAD = """<!DOCTYPE html>
<html lang="{lang}">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Certificado</title>
  <style>
    * {{
      margin: 0;
      padding: 0;
      box-sizing: border-box;
    }}

    @page {{
      size: A4 landscape;
      margin: 0;
    }}

    body {{
      font-family: 'Arial', 'Helvetica', sans-serif;
      -webkit-print-color-adjust: exact;
      print-color-adjust: exact;
    }}

    .certificate-container {{
      width: 297mm;
      height: 210mm;
      position: relative;
      overflow: hidden;
    }}

"""

_DOCUMENT_BODY = """
  </style>
</head>
<body>
  <div class="certificate-container">
"""

_DOCUMENT_TAIL = """
  </div>
</body>
</html>"""


class TemplateEngine:
    """Compile and render certificate templates.

    One instance is created at startup and shared; compiled templates are
    cached by source text.
    """

    def __init__(self, locale: str = "es_PY", cache_size: int = 256) -> None:
        self.locale = locale
        self._env = SandboxedEnvironment(autoescape=True)
        self._env.globals.update(
            {
                "_lookup": _lookup,
                "_iterate": _iterate,
                "_truthy": _truthy,
                "_out": _stringify,
                "_raw": _raw,
                "formatDate": self.format_date,
                "formatNumber": self.format_number,
                "uppercase": _uppercase,
                "lowercase": _lowercase,
                "eq": _eq,
                "gt": _gt,
                "lt": _lt,
            }
        )
        self._compile = lru_cache(maxsize=cache_size)(self._compile_uncached)
        self._long_date_pattern = _two_digit_day(
            dates.get_date_format("long", locale=locale).pattern
        )

    # ---- helpers bound to the configured locale ----

    def format_date(self, value: Any, format: str = "long") -> str:
        parsed = _coerce_date(value)
        if parsed is None:
            return ""
        if format == "long":
            format = self._long_date_pattern
        return dates.format_date(parsed, format=format, locale=self.locale)

    def format_number(self, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            try:
                value = Decimal(value.strip())
            except InvalidOperation:
                return value
        if not _is_number(value):
            return _stringify(value)
        return numbers.format_decimal(value, locale=self.locale)

    # ---- public API ----

    def _compile_uncached(self, template: str) -> _Compiled:
        translator = _Translator(template)
        source = translator.translate()
        try:
            compiled = self._env.from_string(source)
        except TemplateError as e:
            raise TemplateRenderError(f"Template compilation failed: {e}") from e
        return _Compiled(template=compiled, constants=tuple(translator.constants))

    def render(self, template: str, data: Mapping[str, Any] | None = None) -> str:
        """Render ``template`` against ``data``.

        Raises:
            TemplateRenderError: malformed syntax or invalid helper call.
        """
        compiled = self._compile(template)
        try:
            return compiled.template.render(
                _root=dict(data or {}), _const=compiled.constants
            )
        except TemplateError as e:
            raise TemplateRenderError(f"Template rendering failed: {e}") from e

    def validate(self, template: str) -> TemplateValidationResult:
        """Compile-only check for editor UIs; never raises."""
        try:
            self._compile(template)
        except TemplateRenderError as e:
            return TemplateValidationResult(valid=False, error=str(e))
        return TemplateValidationResult(valid=True)

    def extract_variables(self, template: str) -> list[str]:
        """Names referenced by ``{{...}}`` tags, deduplicated in first-seen order.

        Lexical scan only. Control markers are stripped and block keywords
        (``if``, ``each``, ``else``...) are skipped, so
        ``{{#if CUSTOM_MESSAGE}}`` yields ``CUSTOM_MESSAGE`` and ``{{/if}}``
        yields nothing. Helper calls yield the helper name.
        """
        names: dict[str, None] = {}
        for match in _MUSTACHE_RE.finditer(template):
            content = match.group(1).strip()
            if not content or content.startswith("!"):
                continue
            tokens = content.lstrip("{#/^&").split()
            while tokens and tokens[0] in _BLOCK_KEYWORDS:
                tokens.pop(0)
            if not tokens:
                continue
            name = tokens[0].strip("()")
            if not name or name[0] in "\"'@" or name[0].isdigit():
                continue
            names.setdefault(name, None)
        return list(names)

    def create_complete_html(self, content: str, css: str | None = None) -> str:
        """Wrap a template fragment in a print-ready A4 landscape document."""
        lang = self.locale.split("_")[0] or "es"
        return (
            _DOCUMENT_HEAD.format(lang=lang)
            + (f"    {css}\n" if css else "")
            + _DOCUMENT_BODY
            + f"    {content}"
            + _DOCUMENT_TAIL
        )


def is_complete_document(html: str) -> bool:
    """True when ``html`` is already a full document rather than a fragment."""
    return html.lstrip()[:15].lower() == "<!doctype html>"

