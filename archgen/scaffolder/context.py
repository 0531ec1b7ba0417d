"""Render context construction.

Turns a ``GenerationRequest`` plus the architecture's structure definition
into the flat dict templates see: project settings, selectors, naming
variants of the entity / use case / adapter, enriched field, method and
endpoint lists, and the architecture's named paths and Java packages.
"""

from __future__ import annotations

import re
from typing import Any, Optional

from archgen.models import GenerationRequest
from archgen.scaffolder.resolver import StructureDefinition
from archgen.scaffolder.templates import TemplateRenderer
from archgen.utils import package_to_path, path_to_package, pluralize, slugify, to_camel, to_kebab, to_pascal, to_snake

# Names the context builder always provides (before per-entry keys).
ENGINE_VARIABLES: frozenset[str] = frozenset({
    "basePackage",
    "basePackagePath",
    "projectName",
    "projectNameSlug",
    "projectVersion",
    "groupId",
    "javaVersion",
    "versions",
    "architecture",
    "framework",
    "paradigm",
    "isReactive",
    "multiModule",
    "modules",
    "paths",
    "packages",
    "templatePath",
    "templateName",
})

# Variables derived from a request input, available whenever that input is.
DERIVED_VARIABLES: dict[str, frozenset[str]] = {
    "entityName": frozenset({
        "entityNameCamel",
        "entityNameSnake",
        "entityNameKebab",
        "entityNamePlural",
        "entityNamePluralCamel",
    }),
    "useCaseName": frozenset({"useCaseNameCamel"}),
    "fields": frozenset({"fieldImports"}),
}

ADAPTER_VARIABLES: frozenset[str] = frozenset({"adapterType", "adapterName", "adapterNamePascal", "adapterNameCamel"})

_SOURCE_ROOTS = ("src/main/java/", "src/test/java/")


# ---------------------------------------------------------------------------
# Type mapping
# ---------------------------------------------------------------------------

_JAVA_TYPE_MAP: dict[str, str] = {
    "str": "String",
    "string": "String",
    "text": "String",
    "char": "Character",
    "int": "Integer",
    "integer": "Integer",
    "long": "Long",
    "short": "Short",
    "float": "Float",
    "double": "Double",
    "number": "Double",
    "decimal": "BigDecimal",
    "bigdecimal": "BigDecimal",
    "bool": "Boolean",
    "boolean": "Boolean",
    "uuid": "UUID",
    "date": "LocalDate",
    "datetime": "LocalDateTime",
    "localdate": "LocalDate",
    "localdatetime": "LocalDateTime",
    "instant": "Instant",
    "timestamp": "Instant",
    "void": "void",
}

_JAVA_IMPORTS: dict[str, str] = {
    "BigDecimal": "java.math.BigDecimal",
    "UUID": "java.util.UUID",
    "LocalDate": "java.time.LocalDate",
    "LocalDateTime": "java.time.LocalDateTime",
    "Instant": "java.time.Instant",
    "List": "java.util.List",
}

_HTTP_ANNOTATIONS: dict[str, str] = {
    "GET": "GetMapping",
    "POST": "PostMapping",
    "PUT": "PutMapping",
    "PATCH": "PatchMapping",
    "DELETE": "DeleteMapping",
}


def java_type(type_name: str) -> str:
    """Map a loose type name (``string``, ``list<long>``, ``User``) to a Java type."""
    raw = type_name.strip()
    generic = re.fullmatch(r"(?i)(list|set)\s*<\s*(.+?)\s*>", raw)
    if generic:
        container = "List" if generic.group(1).lower() == "list" else "Set"
        return f"{container}<{java_type(generic.group(2))}>"
    return _JAVA_TYPE_MAP.get(raw.lower(), raw)


def _imports_for(types: list[str]) -> list[str]:
    found: set[str] = set()
    for type_name in types:
        for token in re.findall(r"[A-Za-z_]\w*", type_name):
            if token in _JAVA_IMPORTS:
                found.add(_JAVA_IMPORTS[token])
            if token == "Set":
                found.add("java.util.Set")
    return sorted(found)


# ---------------------------------------------------------------------------
# Enrichment
# ---------------------------------------------------------------------------


def _as_named(item: Any, default_type: str = "String") -> dict[str, Any]:
    """Accept ``"email"``, ``"email:String"`` or ``{"name": "email", "type": "String"}``."""
    if isinstance(item, dict):
        return dict(item)
    name, _, type_name = str(item).partition(":")
    return {"name": name.strip(), "type": type_name.strip() or default_type}


def enrich_field(field: Any) -> dict[str, Any]:
    """Add ``javaType``, ``nameCapitalized``, ``nameSnake`` and ``getter`` to a field."""
    data = _as_named(field)
    name = str(data.get("name", ""))
    jtype = java_type(str(data.get("type", "String")))
    capitalized = name[:1].upper() + name[1:]
    return {
        **data,
        "name": name,
        "type": data.get("type", "String"),
        "javaType": jtype,
        "nameCapitalized": capitalized,
        "nameSnake": to_snake(name),
        "getter": f"get{capitalized}",
    }


def enrich_method(method: Any, is_reactive: bool) -> dict[str, Any]:
    """Add ``parameters`` (enriched), ``signature``, ``arguments`` and reactive return types."""
    data = dict(method) if isinstance(method, dict) else {"name": str(method)}
    raw_params = data.get("parameters", [])
    if isinstance(raw_params, str):
        raw_params = [
            {"type": part.rsplit(" ", 1)[0].strip(), "name": part.rsplit(" ", 1)[-1].strip()}
            for part in raw_params.split(",")
            if part.strip()
        ]
    parameters = [enrich_field(param) for param in raw_params]

    return_type = java_type(str(data.get("returnType", "void")))
    is_collection = return_type.startswith(("List<", "Set<"))
    if is_reactive:
        if return_type == "void":
            reactive = "Mono<Void>"
        elif is_collection:
            reactive = f"Flux<{return_type[return_type.index('<') + 1:-1]}>"
        else:
            reactive = f"Mono<{return_type}>"
    else:
        reactive = return_type

    name = str(data.get("name", ""))
    return {
        **data,
        "name": to_camel(name) if name else name,
        "namePascal": to_pascal(name),
        "parameters": parameters,
        "signature": ", ".join(f"{p['javaType']} {p['name']}" for p in parameters),
        "arguments": ", ".join(p["name"] for p in parameters),
        "returnType": return_type,
        "returnTypeWrapped": reactive,
        "returnsCollection": is_collection,
    }


def enrich_endpoint(endpoint: Any) -> dict[str, Any]:
    """Add ``httpMethod``, ``annotation``, ``handlerName`` and ``pathVariables``."""
    if isinstance(endpoint, dict):
        data = dict(endpoint)
    else:
        verb, _, path = str(endpoint).strip().partition(" ")
        data = {"method": verb, "path": path.strip() or "/"}
    http_method = str(data.get("method", "GET")).upper()
    path = str(data.get("path", "/"))
    path_variables = re.findall(r"\{(\w+)\}", path)

    handler = data.get("name") or data.get("useCase")
    if not handler:
        words = [w for w in re.split(r"[/{}]+", path) if w]
        handler = http_method.lower() + "".join(to_pascal(w) for w in words)
    return {
        **data,
        "method": http_method,
        "httpMethod": http_method,
        "path": path,
        "annotation": _HTTP_ANNOTATIONS.get(http_method, "RequestMapping"),
        "handlerName": to_camel(str(handler)),
        "pathVariables": path_variables,
    }


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


def _package_for(path: str) -> Optional[str]:
    for root in _SOURCE_ROOTS:
        if root in path:
            return path_to_package(path.split(root, 1)[1])
    return None


def build_context(
    request: GenerationRequest,
    structure: StructureDefinition,
    renderer: TemplateRenderer,
) -> dict[str, Any]:
    """Build the render context for *request*.

    Request context values are kept as given except for ``fields``,
    ``methods`` and ``endpoints``, which are replaced by enriched copies.

    Raises:
        UndefinedVariable: A structure path references an unknown variable.
    """
    project = request.project
    is_reactive = request.paradigm.lower() == "reactive"

    ctx: dict[str, Any] = dict(request.context)
    ctx.update({
        "basePackage": project.base_package,
        "basePackagePath": package_to_path(project.base_package),
        "projectName": project.name,
        "projectNameSlug": slugify(project.name),
        "projectVersion": project.version,
        "groupId": project.group or project.base_package,
        "javaVersion": project.java_version,
        "versions": dict(project.versions),
        "architecture": request.architecture,
        "framework": request.framework,
        "paradigm": request.paradigm,
        "isReactive": is_reactive,
        "multiModule": structure.multi_module,
        "modules": list(structure.modules),
    })

    if request.adapter_type:
        adapter_name = request.adapter_name or request.adapter_type
        ctx.update({
            "adapterType": request.adapter_type,
            "adapterName": adapter_name,
            "adapterNamePascal": to_pascal(adapter_name),
            "adapterNameCamel": to_camel(adapter_name),
        })

    entity = ctx.get("entityName")
    if entity:
        entity = to_pascal(str(entity))
        ctx.update({
            "entityName": entity,
            "entityNameCamel": to_camel(entity),
            "entityNameSnake": to_snake(entity),
            "entityNameKebab": to_kebab(entity),
            "entityNamePlural": pluralize(entity),
            "entityNamePluralCamel": to_camel(pluralize(entity)),
        })

    use_case = ctx.get("useCaseName")
    if use_case:
        ctx["useCaseName"] = to_pascal(str(use_case))
        ctx["useCaseNameCamel"] = to_camel(str(use_case))

    if "fields" in ctx:
        ctx["fields"] = [enrich_field(f) for f in ctx["fields"] or []]
        ctx["fieldImports"] = _imports_for([f["javaType"] for f in ctx["fields"]])
    if "methods" in ctx:
        ctx["methods"] = [enrich_method(m, is_reactive) for m in ctx["methods"] or []]
    if "endpoints" in ctx:
        ctx["endpoints"] = [enrich_endpoint(e) for e in ctx["endpoints"] or []]

    structure_path = f"architectures/{request.architecture}/structure.yml"
    paths: dict[str, str] = {}
    packages: dict[str, str] = {}
    for key, raw in structure.paths.items():
        paths[key] = renderer.render_string(raw, ctx, structure_path)
        package = _package_for(paths[key])
        if package:
            packages[key] = package
    ctx["paths"] = paths
    ctx["packages"] = packages
    return ctx


def entry_context(base: dict[str, Any], template_path: str) -> dict[str, Any]:
    """Per-entry slice of the context: adds ``templatePath`` and ``templateName``."""
    return {
        **base,
        "templatePath": template_path,
        "templateName": template_path.rsplit("/", 1)[-1],
    }
