from __future__ import annotations
from dataclasses import dataclass
from stats_indexer.config import Settings
from stats_indexer.indexer.action import IndexingAction
from stats_indexer.indexer.changelog import Changelog
from stats_indexer.indexer.definitions import IndexDefinition, IndexMode
from stats_indexer.indexer.processor import ModeProcessor
from stats_indexer.indexer.state import IndexStateRepository
from stats_indexer.indexer.store import IndexStore
from stats_indexer.infrastructure.index_lock import get_index_lock


@dataclass
class LogicalIndex:
    """Every component wired for one source/derived table pair."""
    definition: IndexDefinition
    store: IndexStore
    changelog: Changelog
    state: IndexStateRepository
    action: IndexingAction
    processor: ModeProcessor

    @property
    def name(self) -> str:
        return self.definition.name


def build_logical_index(definition: IndexDefinition, session_factory, settings: Settings) -> LogicalIndex:
    default_mode = IndexMode.parse(settings.default_index_mode)
    store = IndexStore(definition, session_factory)
    changelog = Changelog(definition.name, session_factory)
    state = IndexStateRepository(definition.name, session_factory, default_mode)
    action = IndexingAction(
        definition,
        store,
        state,
        get_index_lock(definition.name),
        session_factory,
        batch_size=settings.reindex_batch_size,
        lock_wait_seconds=settings.index_lock_wait_seconds,
    )
    processor = ModeProcessor(
        definition.name,
        action,
        changelog,
        state,
        fallback_to_changelog=settings.immediate_fallback_to_changelog,
    )
    return LogicalIndex(definition, store, changelog, state, action, processor)
