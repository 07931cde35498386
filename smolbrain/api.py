"""
Core API for smolbrain.

Brain exposes the logical operations of the store:
- add()/create_task(): embed -> insert -> tag, in one transaction
- list_memories()/find()/similar(): filtered, paginated, total-annotated reads
- edit(): archive the old memory and store the new content as a new memory
- tag()/untag()/remove()/restore()/mark_task(): tag-set mutations
- reembed_all(): bring every vector up to the current embedding model
"""

import logging
from pathlib import Path
from typing import Iterable, Optional

from .config import StoreConfig, get_default_store_path, load_or_create_config
from .errors import (
    EmbeddingProviderError,
    NotFoundError,
    StorageError,
    TaskError,
    ValidationError,
)
from .filters import Filters, Window, build_predicate, fetch_page, paginate
from .memory_store import MemoryStore
from .providers import EmbeddingProvider, get_registry
from .similarity import EmbeddingIdentity, NormalizedEmbeddingProvider, encode, rank
from .tasks import OPEN_STATUSES, STATUSES, initial_tags, transition, validate_status
from .types import (
    ARCHIVED_TAG,
    TASK_TAG,
    Memory,
    Page,
    ScoredMemory,
    StatusSummary,
    normalize_tag,
    normalize_tags,
    validate_content,
)

logger = logging.getLogger(__name__)


NO_PROVIDER_ERROR = """
No embedding provider configured.

To enable similarity search, configure a provider:
  Local:      pip install 'smolbrain[local]'
  API-based:  export OPENAI_API_KEY=...  and  pip install 'smolbrain[openai]'

Keyword and listing operations (ls, find, get, tag, tasks) work without embeddings.
"""


class Brain:
    """
    Persistent memory store with keyword and similarity search.

    One Brain performs the operations of one process invocation against a
    shared on-disk store, then is closed.

    Example:
        with Brain() as brain:
            memory = brain.add("Postgres connection pool is capped at 20", ["db"])
            page = brain.find("connection pool")
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[StoreConfig] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
    ) -> None:
        """
        Open an existing store or create a new one.

        Args:
            store_path: Store directory. Defaults to SMOLBRAIN_STORE_PATH or ~/.smolbrain.
            config: Pre-loaded StoreConfig (skips filesystem config discovery).
            embedding_provider: Injected provider (skips registry lookup).
        """
        if config is not None:
            self._config = config
        else:
            path = Path(store_path).expanduser().resolve() if store_path else get_default_store_path()
            self._config = load_or_create_config(path)
        self._store_path = self._config.path

        # Lazy-loaded on first use so read-only operations never load a model
        self._injected_provider = embedding_provider
        self._embedder: Optional[NormalizedEmbeddingProvider] = None

        from .logging_config import configure_ops_log
        self._ops_log_handler = configure_ops_log(self._store_path)

        try:
            self._store = MemoryStore(self._config.database_path)
        except StorageError:
            self.close()
            raise

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def store_path(self) -> Path:
        return self._store_path

    # -------------------------------------------------------------------------
    # Embeddings
    # -------------------------------------------------------------------------

    def _get_embedder(self) -> NormalizedEmbeddingProvider:
        """
        Get the embedding provider, creating it lazily on first use.

        Raises:
            EmbeddingProviderError: If no provider is configured or it cannot start
        """
        if self._embedder is not None:
            return self._embedder

        if self._injected_provider is not None:
            provider = self._injected_provider
            provider_name = type(provider).__name__
        else:
            if self._config.embedding is None:
                raise EmbeddingProviderError(NO_PROVIDER_ERROR.strip())
            provider_name = self._config.embedding.name
            try:
                provider = get_registry().create_embedding(
                    provider_name, self._config.embedding.params,
                )
            except (ValueError, RuntimeError) as e:
                raise EmbeddingProviderError(str(e)) from e

        try:
            dimension = int(provider.dimension)
        except Exception as e:
            raise EmbeddingProviderError(
                f"Embedding provider '{provider_name}' failed: {e}"
            ) from e

        identity = EmbeddingIdentity(
            provider=provider_name,
            model=getattr(provider, "model_name", "unknown"),
            dimension=dimension,
        )
        logger.debug(
            "Embedding provider ready: %s (%dd)", identity.key, identity.dimension,
        )
        self._embedder = NormalizedEmbeddingProvider(provider, identity)
        return self._embedder

    @property
    def embedding_identity(self) -> EmbeddingIdentity:
        """Identity of the active embedding model (loads the provider)."""
        return self._get_embedder().identity

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def add(self, content: str, tags: Iterable[str] = ()) -> Memory:
        """
        Store a new memory with its tags and embedding.

        The embedding is computed before the write transaction opens, so a
        provider failure leaves the store untouched.

        Raises:
            ValidationError: If content is empty or a tag is invalid
            EmbeddingProviderError: If the embedding cannot be computed
        """
        validate_content(content)
        tags = normalize_tags(tags)
        embedder = self._get_embedder()
        vector = embedder.embed(content)

        with self._store.transaction():
            id, _ = self._store.insert(content)
            for tag in tags:
                self._store.add_tag(id, tag)
            self._store.put_embedding(
                id, embedder.identity.key, embedder.dimension, encode(vector),
            )

        logger.info("add id=%d tags=%s", id, ",".join(tags))
        return self.get(id)

    def edit(self, id: int, content: str) -> Memory:
        """
        Store new content as a new memory and archive the old one.

        The old memory keeps its content and gains ``archived``. The new
        memory receives the old tag set minus ``archived``.

        Returns:
            The new memory

        Raises:
            NotFoundError: If ``id`` does not exist
        """
        validate_content(content)
        if not self._store.exists(id):
            raise NotFoundError(id)

        embedder = self._get_embedder()
        vector = embedder.embed(content)

        with self._store.transaction():
            if not self._store.exists(id):
                raise NotFoundError(id)
            carried = [t for t in self._store.list_tags(id) if t != ARCHIVED_TAG]
            self._store.add_tag(id, ARCHIVED_TAG)
            new_id, _ = self._store.insert(content)
            for tag in carried:
                self._store.add_tag(new_id, tag)
            self._store.put_embedding(
                new_id, embedder.identity.key, embedder.dimension, encode(vector),
            )

        logger.info("edit id=%d -> id=%d", id, new_id)
        return self.get(new_id)

    def tag(self, id: int, label: str) -> bool:
        """
        Add a tag. Idempotent.

        Returns:
            True if the tag was added, False if it was already present
        """
        label = normalize_tag(label)
        with self._store.transaction():
            if not self._store.exists(id):
                raise NotFoundError(id)
            changed = self._store.add_tag(id, label)
        if changed:
            logger.info("tag id=%d +%s", id, label)
        return changed

    def untag(self, id: int, label: str) -> bool:
        """
        Remove a tag. Removing an absent tag is not an error.

        Returns:
            True if the tag was removed, False if it was absent
        """
        label = normalize_tag(label)
        with self._store.transaction():
            if not self._store.exists(id):
                raise NotFoundError(id)
            changed = self._store.remove_tag(id, label)
        if changed:
            logger.info("untag id=%d -%s", id, label)
        return changed

    def remove(self, id: int) -> bool:
        """Archive a memory. Returns False if it was already archived."""
        return self.tag(id, ARCHIVED_TAG)

    def restore(self, id: int) -> bool:
        """Un-archive a memory. Returns False if it was not archived."""
        return self.untag(id, ARCHIVED_TAG)

    def create_task(self, content: str, tags: Iterable[str] = ()) -> Memory:
        """Store a new task: tagged ``task`` and ``todo`` plus ``tags``."""
        return self.add(content, initial_tags(normalize_tags(tags)))

    def mark_task(self, id: int, status: str) -> Memory:
        """
        Set a task's status. Any previous status tag is removed in the
        same transaction.

        Raises:
            ValidationError: If ``status`` is not todo, wip or done
            NotFoundError: If ``id`` does not exist
            TaskError: If the memory is not a task
        """
        status = validate_status(status)
        with self._store.transaction():
            if not self._store.exists(id):
                raise NotFoundError(id)
            tags = self._store.list_tags(id)
            if TASK_TAG not in tags:
                raise TaskError(id)
            to_remove, to_add = transition(tags, status)
            for tag in to_remove:
                self._store.remove_tag(id, tag)
            self._store.add_tag(id, to_add)

        logger.info("mark id=%d %s", id, status)
        return self.get(id)

    def reembed_all(self) -> int:
        """
        Embed every memory whose vector is missing or from another model.

        This is the migration path after changing the embedding model.
        Each vector is written in its own short transaction, so an
        interrupted run keeps the progress it made.

        Returns:
            Number of memories embedded
        """
        embedder = self._get_embedder()
        model = embedder.identity.key
        pending = self._store.missing_embeddings(model, embedder.dimension)
        if pending:
            logger.info("reembed: %d memories need a %s vector", len(pending), model)

        count = 0
        for id, content in pending:
            vector = embedder.embed(content)
            with self._store.transaction():
                self._store.put_embedding(id, model, embedder.dimension, encode(vector))
            count += 1

        if count:
            logger.info("reembed: embedded %d memories with %s", count, model)
        return count

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get(self, id: int) -> Memory:
        """
        Retrieve a memory by ID, archived or not.

        Raises:
            NotFoundError: If ``id`` does not exist
        """
        memory = self._store.get(id)
        if memory is None:
            raise NotFoundError(id)
        return memory

    def list_memories(
        self,
        filters: Optional[Filters] = None,
        window: Optional[Window] = None,
    ) -> Page:
        """List memories in chronological order."""
        where, params = build_predicate(self._store, filters or Filters())
        return fetch_page(self._store, where, params, window or Window())

    def find(
        self,
        text: str,
        filters: Optional[Filters] = None,
        window: Optional[Window] = None,
    ) -> Page:
        """
        Full-text search in chronological order.

        A memory matches when every whitespace-separated token of ``text``
        occurs in its content, ignoring case.
        """
        tokens = (text or "").split()
        if not tokens:
            raise ValidationError("Search text cannot be empty")
        where, params = build_predicate(
            self._store, filters or Filters(), text_tokens=tokens,
        )
        return fetch_page(self._store, where, params, window or Window())

    def similar(
        self,
        text: str,
        filters: Optional[Filters] = None,
        window: Optional[Window] = None,
    ) -> Page:
        """
        Semantic search: memories ranked by cosine similarity to ``text``.

        Scores every memory that matches ``filters`` and has a vector from
        the current model. Pagination applies after ranking.

        Returns:
            Page of ScoredMemory, best match first
        """
        if not (text or "").strip():
            raise ValidationError("Search text cannot be empty")
        window = window or Window()
        where, params = build_predicate(self._store, filters or Filters())

        embedder = self._get_embedder()
        query = embedder.embed(text)

        with self._store.snapshot():
            candidates = self._store.vectors(
                where, params, embedder.identity.key, embedder.dimension,
            )
            page = paginate(rank(query, candidates), window)
            memories = self._store.get_many([id for id, _ in page.items])

        items = [ScoredMemory(memories[id], score) for id, score in page.items]
        return Page(items=items, total=page.total, offset=page.offset)

    def list_tasks(
        self,
        status: Optional[str] = None,
        filters: Optional[Filters] = None,
        window: Optional[Window] = None,
    ) -> Page:
        """
        List tasks in chronological order.

        Args:
            status: One status, "all" for every task, or None for open
                tasks (todo and wip)
        """
        if status is None:
            groups = [[TASK_TAG], list(OPEN_STATUSES)]
        elif status.strip().casefold() == "all":
            groups = [[TASK_TAG]]
        else:
            groups = [[TASK_TAG], [validate_status(status)]]
        where, params = build_predicate(self._store, filters or Filters(), any_of=groups)
        return fetch_page(self._store, where, params, window or Window())

    def status_summary(self) -> StatusSummary:
        """Open tasks, the most recent memories and store statistics."""
        tasks_where, tasks_params = build_predicate(
            self._store, Filters(), any_of=[[TASK_TAG], list(OPEN_STATUSES)],
        )
        all_where, all_params = build_predicate(self._store, Filters())

        with self._store.snapshot():
            open_tasks = self._store.select(tasks_where, tasks_params)
            recent = fetch_page(
                self._store, all_where, all_params,
                Window(tail=self._config.recent_limit),
            ).items
            by_status = {}
            for status in STATUSES:
                where, params = build_predicate(
                    self._store, Filters(), any_of=[[TASK_TAG], [status]],
                )
                by_status[status] = self._store.count_where(where, params)
            total = self._store.count()
            embeddings = self._store.embedding_models()

        return StatusSummary(
            open_tasks=open_tasks,
            recent=recent,
            tasks_by_status=by_status,
            total_memories=total,
            embeddings=embeddings,
        )

    def list_tags(self) -> list[tuple[str, int]]:
        """Every tag in use with the number of memories carrying it."""
        return self._store.tag_counts()

    def count(self) -> int:
        """Number of memories, archived included."""
        return self._store.count()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the store and detach the operations log."""
        if getattr(self, "_store", None) is not None:
            self._store.close()
            self._store = None

        # Remove ops log handler to avoid handler accumulation
        if getattr(self, "_ops_log_handler", None) is not None:
            from .logging_config import remove_ops_log
            remove_ops_log(self._ops_log_handler)
            self._ops_log_handler = None

        self._embedder = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close resources."""
        self.close()
        return False

    def __del__(self):
        self.close()
