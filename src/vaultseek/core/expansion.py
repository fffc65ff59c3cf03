"""Query expansion with a chat model and local term extraction.

The expander turns one query into a few alternative phrasings plus two term
sets with different roles:

- salient terms: taken from the original query text only, used for scoring
- expanded terms: suggested by the model, used to widen recall only

Model suggestions never reach the salient set, so a hallucinated term can
bring a note into the candidate pool but can't raise its score.
"""

import logging
import re
from collections import OrderedDict
from typing import Iterable, List, Optional, Tuple

from vaultseek.core.cancellation import CancellationToken, run_with_timeout
from vaultseek.core.interfaces import ChatModel
from vaultseek.core.models import ExpandedQuery, ExpansionSource

logger = logging.getLogger(__name__)

MIN_TERM_LENGTH = 2

PROMPT_TEMPLATE = """Suggest alternative search queries and related search terms for this query:
"{query}"

Rules:
1. Write {count} alternative queries with the same intent as the original
2. List terms a person might search for on this topic: keywords from the query, synonyms, related concepts and domain vocabulary
3. Answer in the same language as the query
4. Prefer nouns and concrete concepts
5. Leave out generic action verbs such as find, search, show or get, in any language

Example for "typescript interfaces":
<queries>
<query>typescript type definitions</query>
<query>typescript contracts</query>
</queries>
<terms>
<term>typescript</term>
<term>interfaces</term>
<term>types</term>
<term>declarations</term>
</terms>

Respond only with the <queries> and <terms> blocks."""

_QUERY_TAG = re.compile(r"<query>(.*?)</query>", re.DOTALL)
_TERM_TAG = re.compile(r"<term>(.*?)</term>", re.DOTALL)
_LIST_PREFIX = re.compile(r"^[-•*\d.)\s]+")
_PUNCTUATION = re.compile(r"[^\w\s-]", re.UNICODE)
_TAG_TOKEN = re.compile(r"#[\w/-]+", re.UNICODE)
_TAG_TERM = re.compile(r"^#[\w/-]+$", re.UNICODE)
_PLAIN_TERM = re.compile(r"^[\w-]+$", re.UNICODE)
_HAS_ALNUM = re.compile(r"[^\W_]", re.UNICODE)


def is_valid_term(term: str) -> bool:
    """Check a term is long enough and shaped like a word or a ``#tag``."""
    if len(term) < MIN_TERM_LENGTH or not _HAS_ALNUM.search(term):
        return False
    if term.startswith("#"):
        return bool(_TAG_TERM.match(term))
    return bool(_PLAIN_TERM.match(term))


def extract_terms(text: str) -> List[str]:
    """Split text into lowercase terms.

    Hyphenated compounds are kept whole and also split into their parts.
    Punctuation (including ``#`` and ``/``) separates terms.
    """
    terms: List[str] = []
    seen = set()

    def add(term: str) -> None:
        if term not in seen and is_valid_term(term):
            seen.add(term)
            terms.append(term)

    for word in _PUNCTUATION.sub(" ", text.lower()).split():
        if not is_valid_term(word):
            continue
        add(word)
        if "-" in word:
            for part in word.split("-"):
                add(part)
    return terms


def extract_tags(text: str) -> List[str]:
    """Return lowercase ``#tag`` tokens found in text, hash preserved."""
    tags: List[str] = []
    for raw in _TAG_TOKEN.findall(text or ""):
        tag = raw.strip().lower()
        if len(tag) > 1 and tag not in tags:
            tags.append(tag)
    return tags


def combine_base_and_tag_terms(
    base_terms: List[str], tag_terms: List[str], original_query: str
) -> List[str]:
    """Merge word terms and tag terms.

    A bare word that only occurs inside a tag (``#project`` without a
    standalone ``project``) is dropped; a word present both ways keeps both.
    """
    combined: List[str] = list(base_terms)
    for tag in tag_terms:
        if tag not in combined:
            combined.append(tag)
    if not tag_terms:
        return combined

    without_tags = original_query.lower()
    for tag in sorted(tag_terms, key=len, reverse=True):
        without_tags = without_tags.replace(tag, " ")
    standalone = set(extract_terms(without_tags))

    for tag in tag_terms:
        bare = tag[1:]
        if bare and bare not in standalone and bare in combined:
            combined.remove(bare)
    return combined


def salient_terms_for(query: str) -> List[str]:
    return combine_base_and_tag_terms(extract_terms(query), extract_tags(query), query)


def _clean_line(line: str) -> str:
    return _LIST_PREFIX.sub("", line).strip()


class QueryExpander:
    """Expands queries through a chat model, with an LRU cache.

    Args:
        chat_model: Model used for expansion; None means local-only expansion
        max_variants: Maximum number of alternative phrasings kept
        timeout: Seconds allowed for the model call
        cache_size: Maximum number of cached expansions
    """

    def __init__(
        self,
        chat_model: Optional[ChatModel] = None,
        max_variants: int = 2,
        timeout: float = 5.0,
        cache_size: int = 100,
    ):
        if cache_size < 1:
            raise ValueError("cache_size must be at least 1")
        self.chat_model = chat_model
        self.max_variants = max_variants
        self.timeout = timeout
        self.cache_capacity = cache_size
        self._cache: "OrderedDict[str, ExpandedQuery]" = OrderedDict()

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()

    async def expand(self, query: str) -> ExpandedQuery:
        """Expand ``query`` into phrasings and term sets.

        Never raises for model problems: timeouts, errors, a missing model or
        an unparseable reply all produce a LOCAL expansion.
        """
        if not query or not query.strip():
            return ExpandedQuery.empty()

        cached = self._cache.get(query)
        if cached is not None:
            self._cache.move_to_end(query)
            logger.debug(f"Using cached expansion for {query!r}")
            return cached

        expanded = await self._expand_uncached(query)
        self._remember(query, expanded)
        return expanded

    async def _expand_uncached(self, query: str) -> ExpandedQuery:
        if self.chat_model is None:
            logger.debug("No chat model configured; using local expansion")
            return self.local_expansion(query)

        outcome = await run_with_timeout(
            lambda token: self._invoke_model(query, token),
            self.timeout,
            label="Query expansion",
        )
        if not outcome.ok or not outcome.value:
            return self.local_expansion(query)

        parsed = self.parse_response(outcome.value, query)
        if parsed is None:
            logger.warning(f"Unparseable expansion reply for {query!r}; using local expansion")
            return self.local_expansion(query)

        logger.info(
            f"Expanded {query!r} to {len(parsed.queries)} queries, "
            f"{len(parsed.salient_terms)} salient and {len(parsed.expanded_terms)} expanded terms"
        )
        return parsed

    async def _invoke_model(self, query: str, token: CancellationToken) -> str:
        prompt = PROMPT_TEMPLATE.format(query=query, count=self.max_variants)
        response = await self.chat_model.invoke(prompt, signal=token)
        return (response.content or "").strip() if response is not None else ""

    def _remember(self, query: str, expanded: ExpandedQuery) -> None:
        self._cache[query] = expanded
        self._cache.move_to_end(query)
        while len(self._cache) > self.cache_capacity:
            self._cache.popitem(last=False)

    def parse_response(self, content: str, original_query: str) -> Optional[ExpandedQuery]:
        """Parse a model reply, tagged format first, then the legacy line format.

        Returns:
            The expansion, or None when the reply yields no queries or terms
        """
        variants = [m.strip() for m in _QUERY_TAG.findall(content)]
        terms = [m.strip().lower() for m in _TERM_TAG.findall(content)]
        queries, expanded_terms = self._collect(original_query, variants, terms)

        if len(queries) == 1 and not expanded_terms:
            queries, expanded_terms = self._parse_legacy(content, original_query)
            if len(queries) == 1 and not expanded_terms:
                return None

        return ExpandedQuery(
            original_query=original_query,
            queries=tuple(queries),
            salient_terms=tuple(salient_terms_for(original_query)),
            expanded_terms=tuple(expanded_terms),
            source=ExpansionSource.MODEL,
        )

    def _collect(
        self, original_query: str, variants: Iterable[str], terms: Iterable[str]
    ) -> Tuple[List[str], List[str]]:
        queries = [original_query]
        for variant in variants:
            if len(queries) > self.max_variants:
                break
            if variant and variant != original_query and variant not in queries:
                queries.append(variant)
        expanded: List[str] = []
        for term in terms:
            if term and term not in expanded and is_valid_term(term):
                expanded.append(term)
        return queries, expanded

    def _parse_legacy(self, content: str, original_query: str) -> Tuple[List[str], List[str]]:
        lines = [line.strip() for line in content.splitlines() if line.strip()]
        variants: List[str] = []
        terms: List[str] = []
        section = None
        saw_section = False

        for line in lines:
            upper = line.upper()
            if "QUERIES" in upper:
                section, saw_section = "queries", True
                continue
            if "TERMS" in upper or "KEYWORDS" in upper:
                section, saw_section = "terms", True
                continue
            if section == "queries":
                variants.append(_clean_line(line))
            elif section == "terms":
                terms.append(_clean_line(line).lower())

        if not saw_section:
            variants = [line for line in lines if "QUERY" not in line.upper()]

        return self._collect(original_query, variants, terms)

    def local_expansion(self, query: str) -> ExpandedQuery:
        """Degraded expansion: the original query and its own terms."""
        return ExpandedQuery(
            original_query=query,
            queries=(query,),
            salient_terms=tuple(salient_terms_for(query)),
            expanded_terms=(),
            source=ExpansionSource.LOCAL,
        )
