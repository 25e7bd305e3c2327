"""Tree-level merge of inheritance-ordered policy documents into one document."""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable

from .constants import ATTRIBUTE_PREFIX, ID_MERGED_SECTIONS, ROOT_ELEMENT, TEXT_KEY
from .errors import PolicyProcessingError
from .extractor import attr, text
from .framework import as_list, child_elements

LOGGER = logging.getLogger(__name__)

KeyFn = Callable[[Any], "str | None"]


def _by_id(node: Any) -> str | None:
    return attr(node, "Id")


def _by_display_name(node: Any) -> str | None:
    return text(node, "DisplayName")


# Attributes that identify one occurrence of a repeatable child element.
REFERENCE_ATTRIBUTES = ("Id", "Order", "ClaimTypeReferenceId", "Key", "ReferenceId", "ElementType", "ElementId", "StringId")


def reference_key(node: Any) -> tuple[tuple[str, str], ...]:
    if not isinstance(node, dict):
        return ()
    return tuple(
        (name, str(node[ATTRIBUTE_PREFIX + name]))
        for name in REFERENCE_ATTRIBUTES
        if node.get(ATTRIBUTE_PREFIX + name) not in (None, "")
    )


def _order_of(node: Any) -> int:
    try:
        return int(attr(node, "Order") or 0)
    except ValueError:
        return 0


def _merge_children(existing: Any, incoming: Any) -> Any:
    current = as_list(existing)
    additions = as_list(incoming)
    if not current or not additions:
        return copy.deepcopy(incoming if additions else existing)

    keyed = all(reference_key(item) for item in [*current, *additions])
    if keyed:
        merged = list(current)
        index = {reference_key(item): position for position, item in enumerate(merged)}
        for item in additions:
            key = reference_key(item)
            if key in index:
                merged[index[key]] = merge_element(merged[index[key]], item)
            else:
                merged.append(copy.deepcopy(item))
                index[key] = len(merged) - 1
        if all(attr(item, "Order") for item in merged):
            merged.sort(key=_order_of)
    elif len(current) == 1 and len(additions) == 1 and isinstance(current[0], dict) and isinstance(additions[0], dict):
        merged = [merge_element(current[0], additions[0])]
    else:
        # Unkeyed repeatable children cannot be matched; the derived list wins.
        return copy.deepcopy(incoming)

    if len(merged) == 1 and not isinstance(existing, list) and not isinstance(incoming, list):
        return merged[0]
    return merged


def merge_element(target: Any, source: Any) -> Any:
    """Deep merge of ``source`` onto ``target``.

    Attributes and text of ``source`` win. Child elements merge recursively;
    repeatable children are matched on their reference attributes (``Id``,
    ``Order``, ``ClaimTypeReferenceId``, ``Key``, ``ReferenceId``...), so a
    derived policy only has to carry the pieces it changes.
    """
    if not isinstance(target, dict) or not isinstance(source, dict):
        return copy.deepcopy(source)
    merged = copy.deepcopy(target)
    for key, value in source.items():
        if key.startswith(ATTRIBUTE_PREFIX) or key == TEXT_KEY or key not in merged:
            merged[key] = copy.deepcopy(value)
        else:
            merged[key] = _merge_children(merged[key], value)
    return merged


def _ensure_container(root: dict[str, Any], path: tuple[str, ...]) -> dict[str, Any]:
    current = root
    for name in path:
        value = current.get(name)
        if not isinstance(value, dict):
            value = {}
            current[name] = value
        current = value
    return current


class PolicyConsolidator:
    def consolidate(self, ordered: list[tuple[str, dict[str, Any]]]) -> dict[str, Any]:
        """Merge ``(file_name, parsed)`` pairs given base first."""
        if not ordered:
            raise PolicyProcessingError("No policies to consolidate")

        merged = copy.deepcopy(ordered[0][1][ROOT_ELEMENT])
        for file_name, parsed in ordered[1:]:
            LOGGER.debug("merging %s into consolidated policy", file_name)
            self._merge_policy(merged, parsed[ROOT_ELEMENT])

        leaf = ordered[-1][1][ROOT_ELEMENT]
        for key in ("@_PolicyId", "@_TenantId", "@_PublicPolicyUri"):
            if leaf.get(key):
                merged[key] = leaf[key]
        merged.pop("BasePolicy", None)
        return {ROOT_ELEMENT: merged}

    def _merge_policy(self, target: dict[str, Any], source: dict[str, Any]) -> None:
        for path, element in ID_MERGED_SECTIONS:
            self._merge_keyed(target, source, path, element, _by_id)
        self._merge_localization(target, source)
        self._merge_claims_providers(target, source)

        if "RelyingParty" in source:
            target["RelyingParty"] = copy.deepcopy(source["RelyingParty"])

        handled = {"BuildingBlocks", "ClaimsProviders", "UserJourneys", "SubJourneys", "RelyingParty", "BasePolicy"}
        for key, value in source.items():
            if key.startswith("@_") or key in handled or key in target:
                continue
            target[key] = copy.deepcopy(value)

    def _merge_keyed(
        self,
        target_root: dict[str, Any],
        source_root: dict[str, Any],
        path: tuple[str, ...],
        element: str,
        key_fn: KeyFn,
    ) -> None:
        incoming = child_elements(source_root, *path, element)
        if not incoming:
            return
        container = _ensure_container(target_root, path)
        container[element] = self._merge_items(as_list(container.get(element)), incoming, key_fn)

    def _merge_items(self, existing: list[Any], incoming: list[Any], key_fn: KeyFn) -> list[Any]:
        merged = list(existing)
        index = {key_fn(item): position for position, item in enumerate(merged) if key_fn(item)}
        for item in incoming:
            key = key_fn(item)
            if key and key in index:
                merged[index[key]] = merge_element(merged[index[key]], item)
            else:
                merged.append(copy.deepcopy(item))
                if key:
                    index[key] = len(merged) - 1
        return merged

    def _merge_localization(self, target: dict[str, Any], source: dict[str, Any]) -> None:
        source_localization = child_elements(source, "BuildingBlocks", "Localization")
        if not source_localization or not isinstance(source_localization[0], dict):
            return
        localization = _ensure_container(target, ("BuildingBlocks", "Localization"))
        incoming = source_localization[0]

        languages = incoming.get("SupportedLanguages")
        if isinstance(languages, dict):
            current = localization.get("SupportedLanguages")
            if not isinstance(current, dict):
                localization["SupportedLanguages"] = copy.deepcopy(languages)
            else:
                values = [*as_list(current.get("SupportedLanguage")), *as_list(languages.get("SupportedLanguage"))]
                unique = list(dict.fromkeys(text(value) or "" for value in values))
                current.update({k: v for k, v in languages.items() if k.startswith("@_")})
                current["SupportedLanguage"] = [value for value in unique if value]

        resources = as_list(incoming.get("LocalizedResources"))
        if resources:
            localization["LocalizedResources"] = self._merge_items(
                as_list(localization.get("LocalizedResources")), resources, _by_id
            )

    def _merge_claims_providers(self, target: dict[str, Any], source: dict[str, Any]) -> None:
        incoming = child_elements(source, "ClaimsProviders", "ClaimsProvider")
        if not incoming:
            return
        container = _ensure_container(target, ("ClaimsProviders",))
        providers = as_list(container.get("ClaimsProvider"))
        index = {_by_display_name(p): i for i, p in enumerate(providers) if _by_display_name(p)}

        for provider in incoming:
            name = _by_display_name(provider)
            if not name or name not in index:
                providers.append(copy.deepcopy(provider))
                if name:
                    index[name] = len(providers) - 1
                continue
            current = providers[index[name]]
            profiles = self._merge_items(
                child_elements(current, "TechnicalProfiles", "TechnicalProfile"),
                child_elements(provider, "TechnicalProfiles", "TechnicalProfile"),
                _by_id,
            )
            updated = merge_element(current, {k: v for k, v in provider.items() if k != "TechnicalProfiles"})
            updated["TechnicalProfiles"] = {"TechnicalProfile": profiles}
            providers[index[name]] = updated
        container["ClaimsProvider"] = providers
