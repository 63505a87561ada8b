"""Flattens parsed schema files into search entities and stores them.

Each indexed version is rebuilt from scratch: every declared file is parsed,
every message, field, enum, enum value, service and method becomes one
``SearchEntity`` with a dot-qualified ``full_path``, and the version's
previous entities are replaced.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Set

from schema import parse_proto
from schema.ast import CommentNode, EnumNode, MessageNode, RootNode, ServiceNode
from .errors import VersionNotFoundError
from .models import IndexDiagnostic, IndexResult, ReindexSummary, SearchEntity

logger = logging.getLogger(__name__)


@dataclass
class IndexerConfig:
    """Indexing behaviour."""
    batch_size: int = 100
    # Delete and all insert batches share one transaction
    atomic_reindex: bool = True
    # Directory for cross-process lock files; None locks in-process only
    lock_dir: Optional[str] = None
    lock_timeout: float = 60.0


def _join_path(parent: str, name: str) -> str:
    return f"{parent}.{name}" if parent else name


def extract_comments(comments: List[CommentNode]) -> str:
    """Join every non-empty comment fragment, trimmed, with single spaces."""
    return ' '.join(c.text.strip() for c in comments if c.text and c.text.strip())


def extract_description(comments: List[CommentNode]) -> str:
    """First line of the first comment."""
    if not comments:
        return ''
    return comments[0].text.split('\n', 1)[0].strip()


def _documented(comments: List[CommentNode]) -> dict:
    return {
        'description': extract_description(comments),
        'comments': extract_comments(comments),
    }


def extract_message_entities(version_id: int, message: MessageNode, parent_path: str,
                             file_path: str) -> List[SearchEntity]:
    full_path = _join_path(parent_path, message.name)
    entities = [SearchEntity(
        version_id=version_id,
        entity_type='message',
        entity_name=message.name,
        full_path=full_path,
        parent_path=parent_path,
        proto_file_path=file_path,
        line_number=message.line,
        **_documented(message.comments)
    )]

    for field in message.fields:
        metadata = {'oneof': field.oneof} if field.oneof else {}
        entities.append(SearchEntity(
            version_id=version_id,
            entity_type='field',
            entity_name=field.name,
            full_path=_join_path(full_path, field.name),
            parent_path=full_path,
            proto_file_path=file_path,
            line_number=field.line,
            field_type=field.type,
            field_number=field.number,
            is_repeated=field.repeated,
            is_optional=field.optional,
            metadata=metadata,
            **_documented(field.comments)
        ))

    for nested in message.nested:
        entities.extend(extract_message_entities(version_id, nested, full_path, file_path))

    for enum in message.enums:
        entities.extend(extract_enum_entities(version_id, enum, full_path, file_path))

    return entities


def extract_enum_entities(version_id: int, enum: EnumNode, parent_path: str,
                          file_path: str) -> List[SearchEntity]:
    full_path = _join_path(parent_path, enum.name)
    entities = [SearchEntity(
        version_id=version_id,
        entity_type='enum',
        entity_name=enum.name,
        full_path=full_path,
        parent_path=parent_path,
        proto_file_path=file_path,
        line_number=enum.line,
        **_documented(enum.comments)
    )]

    for value in enum.values:
        # Enum values carry their numeric tag in field_number
        entities.append(SearchEntity(
            version_id=version_id,
            entity_type='enum_value',
            entity_name=value.name,
            full_path=_join_path(full_path, value.name),
            parent_path=full_path,
            proto_file_path=file_path,
            line_number=value.line,
            field_number=value.number,
            **_documented(value.comments)
        ))

    return entities


def extract_service_entities(version_id: int, service: ServiceNode, parent_path: str,
                             file_path: str) -> List[SearchEntity]:
    full_path = _join_path(parent_path, service.name)
    entities = [SearchEntity(
        version_id=version_id,
        entity_type='service',
        entity_name=service.name,
        full_path=full_path,
        parent_path=parent_path,
        proto_file_path=file_path,
        line_number=service.line,
        **_documented(service.comments)
    )]

    for rpc in service.rpcs:
        metadata = {}
        if rpc.client_streaming:
            metadata['client_streaming'] = True
        if rpc.server_streaming:
            metadata['server_streaming'] = True

        entities.append(SearchEntity(
            version_id=version_id,
            entity_type='method',
            entity_name=rpc.name,
            full_path=_join_path(full_path, rpc.name),
            parent_path=full_path,
            proto_file_path=file_path,
            line_number=rpc.line,
            method_input_type=rpc.input_type,
            method_output_type=rpc.output_type,
            metadata=metadata,
            **_documented(rpc.comments)
        ))

    return entities


def extract_entities(version_id: int, root: RootNode, file_path: str) -> List[SearchEntity]:
    """
    Flatten one parsed file into search entities.

    Args:
        version_id: Version the entities belong to
        root: Parsed file
        file_path: Path recorded as each entity's provenance

    Returns:
        Entities in declaration order, parents before children
    """
    package = root.package or ''
    entities: List[SearchEntity] = []

    for message in root.messages:
        entities.extend(extract_message_entities(version_id, message, package, file_path))
    for enum in root.enums:
        entities.extend(extract_enum_entities(version_id, enum, package, file_path))
    for service in root.services:
        entities.extend(extract_service_entities(version_id, service, package, file_path))

    return entities


class Indexer:
    """Builds and replaces the search entities of registered versions."""

    def __init__(self, store, registry,
                 parser_factory: Callable[[str], RootNode] = parse_proto,
                 config: Optional[IndexerConfig] = None,
                 lock_manager=None):
        """
        Args:
            store: IndexStore receiving the entities
            registry: RegistryReader supplying versions and file contents
            parser_factory: Callable turning file content into a RootNode
            config: Indexing behaviour
            lock_manager: VersionLockManager; built from config when omitted
        """
        self.store = store
        self.registry = registry
        self.parser_factory = parser_factory
        self.config = config or IndexerConfig()

        if lock_manager is None:
            from storage.locks import VersionLockManager
            lock_manager = VersionLockManager(self.config.lock_dir, timeout=self.config.lock_timeout)
        self.locks = lock_manager

    def index_version(self, module_name: str, version: str) -> IndexResult:
        """
        Rebuild the search entities of one version.

        Unreadable or unparseable files are skipped and reported in the
        result's diagnostics.

        Raises:
            VersionNotFoundError: If the version is not registered
            IndexingError: If the store rejects the replacement
        """
        version_id = self.store.resolve_version_id(module_name, version)
        if version_id is None:
            raise VersionNotFoundError(module_name, version)

        with self.locks.lock(version_id):
            version_info = self.registry.get_version(module_name, version)
            if version_info is None:
                raise VersionNotFoundError(module_name, version)

            result = IndexResult(module_name=module_name, version=version, version_id=version_id)
            entities: List[SearchEntity] = []
            imports: Set[str] = set()
            seen = set()

            for file_info in version_info.files:
                try:
                    proto_file = self.registry.get_file(version_id, file_info.path)
                except Exception as e:
                    logger.warning(f"{module_name}@{version}: failed to read {file_info.path}: {e}")
                    result.diagnostics.append(IndexDiagnostic(file_info.path, 'read', str(e)))
                    continue
                if proto_file is None:
                    logger.warning(f"{module_name}@{version}: file {file_info.path} not found, skipping")
                    result.diagnostics.append(IndexDiagnostic(file_info.path, 'read', 'file not found'))
                    continue

                try:
                    root = self.parser_factory(proto_file.content)
                except Exception as e:
                    logger.warning(f"{module_name}@{version}: failed to parse {file_info.path}: {e}")
                    result.diagnostics.append(IndexDiagnostic(file_info.path, 'parse', str(e)))
                    continue

                result.file_count += 1
                imports.update(imp.path for imp in root.imports)

                for entity in extract_entities(version_id, root, file_info.path):
                    if entity.key in seen:
                        logger.warning(
                            f"{module_name}@{version}: duplicate {entity.entity_type} "
                            f"{entity.full_path} in {file_info.path}, keeping the first"
                        )
                        result.diagnostics.append(IndexDiagnostic(
                            file_info.path, 'duplicate', f"{entity.entity_type} {entity.full_path}"
                        ))
                        continue
                    seen.add(entity.key)
                    entities.append(entity)

            result.entity_count = self.store.replace_entities(
                version_id,
                entities,
                imports=imports,
                batch_size=self.config.batch_size,
                atomic=self.config.atomic_reindex
            )

        logger.info(
            f"Indexed {module_name}@{version}: {result.entity_count} entities "
            f"from {result.file_count} file(s), {len(result.diagnostics)} diagnostic(s)"
        )
        return result

    def reindex_all(self, cancel_event: Optional[threading.Event] = None) -> ReindexSummary:
        """
        Reindex every registered version.

        A failing version or module is logged and recorded; the pass goes on.
        Setting ``cancel_event`` stops the pass before the next version.
        """
        summary = ReindexSummary()

        for module in self.registry.list_modules():
            try:
                versions = self.registry.list_versions(module.name)
            except Exception as e:
                logger.error(f"Failed to list versions of module {module.name}: {e}")
                summary.add_failure(module.name, '', str(e))
                continue

            for version in versions:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("Reindex cancelled")
                    summary.cancelled = True
                    return summary

                try:
                    summary.indexed.append(self.index_version(module.name, version.version))
                except Exception as e:
                    logger.error(f"Failed to index {module.name}@{version.version}: {e}")
                    summary.add_failure(module.name, version.version, str(e))

        logger.info(
            f"Reindex complete: {len(summary.indexed)} version(s) indexed, "
            f"{len(summary.failed)} failure(s)"
        )
        return summary
