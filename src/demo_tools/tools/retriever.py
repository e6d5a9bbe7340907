"""Blog-post retriever over a small in-memory corpus.

Scoring is plain term overlap; it stands in for a vector store so the
retrieval-grading loop can run offline.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from ..schemas import RetrieveInput

_STOPWORDS = {
    "the", "and", "for", "are", "what", "how", "does", "with", "that", "this",
    "from", "based", "about", "into", "its", "his", "her", "their", "blog", "post", "posts",
}


@dataclass(frozen=True)
class Document:
    source: str
    text: str


BLOG_POSTS: tuple[Document, ...] = (
    Document(
        "https://lilianweng.github.io/posts/2023-06-23-agent/",
        "Agent memory comes in several types. Short-term memory is in-context learning inside the "
        "prompt window. Long-term memory keeps information over extended periods, usually in an "
        "external vector store with fast maximum inner product search.",
    ),
    Document(
        "https://lilianweng.github.io/posts/2023-06-23-agent/",
        "Planning lets an agent break a large task into smaller subgoals. Self-reflection lets it "
        "critique past actions, learn from mistakes and refine later steps, as in ReAct and Reflexion.",
    ),
    Document(
        "https://lilianweng.github.io/posts/2023-06-23-agent/",
        "Tool use extends a language model with external APIs for current information, code "
        "execution and access to proprietary sources that the model weights do not contain.",
    ),
    Document(
        "https://lilianweng.github.io/posts/2023-03-15-prompt-engineering/",
        "Prompt engineering steers model behaviour without updating weights. Techniques include "
        "zero-shot and few-shot prompting, instruction prompting and chain-of-thought reasoning.",
    ),
    Document(
        "https://lilianweng.github.io/posts/2023-10-25-adv-attack-llm/",
        "Adversarial attacks on LLMs include jailbreak prompts and token manipulation that try to "
        "make an aligned model produce unsafe output.",
    ),
)

NO_MATCH = "No relevant documents found."


def _terms(text: str) -> set[str]:
    return {word for word in re.findall(r"[a-z][a-z-]{2,}", text.lower()) if word not in _STOPWORDS}


class KeywordRetriever:
    def __init__(self, documents: Iterable[Document] = BLOG_POSTS) -> None:
        self._documents = tuple(documents)

    def search(self, query: str, k: int = 3) -> list[Document]:
        wanted = _terms(query)
        scored = []
        for idx, doc in enumerate(self._documents):
            score = len(wanted & _terms(doc.text))
            if score:
                scored.append((-score, idx, doc))
        scored.sort()
        return [doc for _, _, doc in scored[:k]]


_default = KeywordRetriever()


def retrieve_blog_posts(payload: RetrieveInput) -> str:
    docs = _default.search(payload.query, payload.k)
    if not docs:
        return NO_MATCH
    return "\n\n".join(doc.text for doc in docs)
