"""Reading ingresses and editing their configuration annotations."""

from __future__ import annotations

import copy
import logging
import uuid
from typing import Any, Protocol

from kubeprobe.client import KubernetesClient
from kubeprobe.store import ResourceKind

logger = logging.getLogger(__name__)

MAX_RETRIES = 10


class IngressUpdateError(RuntimeError):
    """Raised when an ingress cannot be fetched or updated."""


class IngressNotFoundError(IngressUpdateError, LookupError):
    """Raised when an ingress does not exist."""


class ConflictError(RuntimeError):
    """Raised by an ingress API when an update hits a newer version of the object."""


class IngressApi(Protocol):
    """Direct access to ingresses on the API server."""

    def get_ingress(self, namespace: str, name: str) -> dict[str, Any] | None:
        """The current ingress, or None if it does not exist."""

    def update_ingress(self, namespace: str, ingress: dict[str, Any]) -> Any:
        """Store a changed ingress; raise ConflictError on a version conflict."""


def remove_annotation_block(config: str, start_marker: str, end_marker: str) -> str:
    """Remove the text from start_marker to end_marker, both included."""
    start = config.find(start_marker)
    end = config.find(end_marker)
    if start == -1 or end == -1:
        return config
    return config[:start] + config[end + len(end_marker):]


class IngressEditor:
    """Looks up ingresses and changes their annotations with conflict retries."""

    def __init__(self, client: KubernetesClient, api: IngressApi) -> None:
        self.client = client
        self.api = api

    def ingress_by_namespace_and_name(
        self, namespace: str, name: str, force_update: bool = False
    ) -> dict[str, Any]:
        """The ingress from the cache, or straight from the API with force_update."""
        not_found = f"ingress {namespace}/{name} not found"
        if force_update:
            try:
                ingress = self.api.get_ingress(namespace, name)
            except IngressNotFoundError as exc:
                raise IngressNotFoundError(not_found) from exc
            except Exception as exc:
                raise IngressUpdateError(
                    f"error fetching ingress {namespace}/{name} directly from API: {exc}"
                ) from exc
            if ingress is None:
                raise IngressNotFoundError(not_found)
            return ingress

        try:
            store = self.client.store(ResourceKind.INGRESS)
        except KeyError as exc:
            raise IngressUpdateError(
                f"error fetching ingress {namespace}/{name}: {exc}"
            ) from exc
        ingress = store.get(namespace, name)
        if ingress is None:
            raise IngressNotFoundError(not_found)
        return ingress

    def _fetch_fresh(self, namespace: str, name: str) -> dict[str, Any]:
        try:
            ingress = self.ingress_by_namespace_and_name(namespace, name, True)
        except IngressUpdateError as exc:
            raise IngressUpdateError(f"failed to fetch ingress: {exc}") from exc
        return copy.deepcopy(ingress)

    def _store(self, namespace: str, ingress: dict[str, Any]) -> bool:
        """Write the ingress; False on a conflict, raising on other failures."""
        try:
            self.api.update_ingress(namespace, ingress)
        except ConflictError:
            return False
        except Exception as exc:
            raise IngressUpdateError(f"failed to update ingress annotation: {exc}") from exc
        return True

    def update_ingress_annotation(
        self,
        namespace: str,
        ingress_name: str,
        annotation_key: str,
        new_annotation_suffix: str,
    ) -> None:
        """Put new_annotation_suffix in front of the annotation's current value."""
        for attempt in range(1, MAX_RETRIES + 1):
            ingress = self._fetch_fresh(namespace, ingress_name)
            metadata = ingress.setdefault("metadata", {})
            annotations = metadata.get("annotations")
            if annotations is None:
                annotations = metadata["annotations"] = {}
                new_config = new_annotation_suffix
            else:
                new_config = new_annotation_suffix + "\n" + annotations.get(annotation_key, "")
            annotations[annotation_key] = new_config

            try:
                stored = self._store(namespace, ingress)
            except IngressUpdateError:
                logger.exception(
                    "Failed to update ingress %s/%s annotation %s",
                    namespace, ingress_name, annotation_key,
                )
                raise
            if stored:
                logger.debug(
                    "Updated ingress %s/%s annotation %s with new config: %s",
                    namespace, ingress_name, annotation_key, new_config,
                )
                return
            logger.debug(
                "Conflict detected while updating ingress %s/%s, retrying (attempt %d/%d)",
                namespace, ingress_name, attempt, MAX_RETRIES,
            )
        logger.error(
            "Failed to update ingress %s/%s annotation %s after %d attempts",
            namespace, ingress_name, annotation_key, MAX_RETRIES,
        )
        raise IngressUpdateError(
            f"failed to update ingress annotation after {MAX_RETRIES} attempts "
            "due to concurrent modifications"
        )

    def remove_annotation_block(
        self,
        namespace: str,
        ingress_name: str,
        annotation_key: str,
        execution_id: uuid.UUID | str,
    ) -> None:
        """Remove the block an execution added to the annotation, if present."""
        logger.debug(
            "Removing annotation block from ingress %s/%s with execution ID %s",
            namespace, ingress_name, execution_id,
        )
        start_marker = f"# BEGIN STEADYBIT - {execution_id}"
        end_marker = f"# END STEADYBIT - {execution_id}"

        for attempt in range(1, MAX_RETRIES + 1):
            ingress = self._fetch_fresh(namespace, ingress_name)
            annotations = (ingress.get("metadata") or {}).get("annotations")
            if not annotations or not annotations.get(annotation_key, ""):
                return
            existing = annotations[annotation_key]
            updated = remove_annotation_block(existing, start_marker, end_marker)
            if updated == existing:
                return
            annotations[annotation_key] = updated

            if self._store(namespace, ingress):
                return
            logger.debug(
                "Conflict detected while removing annotation block in ingress %s/%s, "
                "retrying (attempt %d/%d)",
                namespace, ingress_name, attempt, MAX_RETRIES,
            )
        raise IngressUpdateError(
            f"failed to update ingress annotation after {MAX_RETRIES} attempts "
            "due to concurrent modifications"
        )