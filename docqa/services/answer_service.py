"""
Answer Service
Retrieval-augmented question answering over the indexed documents.
"""
from typing import List, Optional, Sequence

import structlog

from docqa.models.schemas import AnswerResult, ChatMessage, Citation, RetrievalMatch
from docqa.services.embedding_service import EmbeddingService, get_embedding_service
from docqa.services.providers import ModelProvider, get_chat_provider
from docqa.services.vector_store import VectorStore, get_vector_store

logger = structlog.get_logger()

SUMMARY_TOP_K = 20
QUESTION_TOP_K = 12
MAX_CITATIONS = 5
SNIPPET_LENGTH = 150
HISTORY_TURNS = 4

NO_MATCH_RESPONSE = (
    "I couldn't find any relevant information in your documents. Please upload a document "
    "first, or ask a question about the documents you've uploaded."
)
EMPTY_RESPONSE = "Sorry, I could not generate a response."

SUMMARY_SYSTEM_PROMPT = """You are an AI assistant that provides comprehensive document summaries.
Based on the uploaded documents, create a detailed and well-organized summary that:

1. Highlights key information and main points from each document
2. Organizes information logically by topic or document type
3. Includes specific details like names, dates, numbers, and important facts
4. Provides context about what each document contains
5. Uses clear headings and bullet points for easy reading

Be thorough and include all important information while keeping it well-structured and easy to understand.

When you reference information from documents, try to be specific about the source and location when possible, as this will help users understand where the information comes from."""

QUESTION_SYSTEM_PROMPT = """You are a helpful AI assistant that answers questions about uploaded documents.
You have access to relevant chunks of information from the user's documents.

Guidelines for your responses:
1. Always base your answers on the provided document content
2. Be specific and cite the document names when referencing information
3. If you find specific information like names, dates, or numbers, include them in your response
4. If the question is about certificates or official documents, be precise with details
5. If you cannot find the specific information requested, say so clearly
6. Maintain context from previous conversation when relevant
7. For document-specific questions, focus on extracting exact information from the documents

When you reference information from documents, try to be specific about the source and location when possible, as this will help users understand where the information comes from."""


def format_context(matches: Sequence[RetrievalMatch]) -> str:
    """One labelled block per match, in retrieval order, separated by a blank line."""
    blocks = []
    for match in matches:
        page_info = f" (Page {match.page_number})" if match.page_number else ""
        blocks.append(f"[Document: {match.filename}{page_info}]\n{match.text}")
    return "\n\n".join(blocks)


def format_history(history: Optional[Sequence[ChatMessage]]) -> str:
    if not history:
        return ""
    recent = list(history)[-HISTORY_TURNS:]
    return "\n".join(
        f"{'User' if message.role == 'user' else 'Assistant'}: {message.content}"
        for message in recent
    )


def build_prompt(question: str, context: str, history: str) -> str:
    return (
        f"Previous conversation:\n{history}\n\n"
        f"Context from documents:\n{context}\n\n"
        f"User question: {question}\n\n"
        "Please provide a helpful and accurate response based on the document content:"
    )


def make_snippet(text: str) -> str:
    if len(text) > SNIPPET_LENGTH:
        return text[:SNIPPET_LENGTH] + "..."
    return text


def build_citations(matches: Sequence[RetrievalMatch]) -> List[Citation]:
    """Citations for the first MAX_CITATIONS matches; chunk_index is the 1-based rank."""
    return [
        Citation(
            filename=match.filename,
            page_number=match.page_number,
            snippet=make_snippet(match.text),
            chunk_index=rank,
        )
        for rank, match in enumerate(matches[:MAX_CITATIONS], start=1)
    ]


def distinct_sources(matches: Sequence[RetrievalMatch]) -> List[str]:
    return list(dict.fromkeys(match.filename for match in matches))


class AnswerService:
    """Answers questions from retrieved document chunks."""

    def __init__(
        self,
        embedding_service: Optional[EmbeddingService] = None,
        vector_store: Optional[VectorStore] = None,
        chat_provider: Optional[ModelProvider] = None,
    ):
        self.embedding_service = embedding_service or get_embedding_service()
        self.vector_store = vector_store or get_vector_store()
        self.chat_provider = chat_provider or get_chat_provider()

    async def retrieve(
        self,
        question: str,
        is_summary: bool = False,
        selected_documents: Optional[Sequence[str]] = None,
    ) -> List[RetrievalMatch]:
        """Embed the question and return usable matches in score order."""
        embedding = await self.embedding_service.embed_query(question)
        top_k = SUMMARY_TOP_K if is_summary else QUESTION_TOP_K
        matches = await self.vector_store.query(embedding, top_k=top_k)

        if selected_documents:
            selected = set(selected_documents)
            matches = [match for match in matches if match.filename in selected]
            logger.info(
                "Filtered to selected documents",
                matches=len(matches),
                documents=sorted(selected),
            )

        return [match for match in matches if match.text and match.text.strip()]

    async def answer(
        self,
        question: str,
        history: Optional[Sequence[ChatMessage]] = None,
        is_summary: bool = False,
        selected_documents: Optional[Sequence[str]] = None,
    ) -> AnswerResult:
        """
        Answer a question from the indexed documents.

        Args:
            question: The user's question
            history: Prior conversation; only the last few turns are used
            is_summary: Retrieve more chunks and use the summary prompt
            selected_documents: Restrict matches to these filenames

        Returns:
            AnswerResult with response text, up to 5 citations and source filenames
        """
        logger.info(
            "Processing question",
            question=question,
            is_summary=is_summary,
            history_turns=len(history or []),
        )

        matches = await self.retrieve(question, is_summary, selected_documents)
        if not matches:
            logger.info("No relevant chunks found")
            return AnswerResult(response=NO_MATCH_RESPONSE)

        sources = distinct_sources(matches)
        logger.info("Found relevant chunks", chunks=len(matches), sources=sources)

        prompt = build_prompt(question, format_context(matches), format_history(history))
        system_prompt = SUMMARY_SYSTEM_PROMPT if is_summary else QUESTION_SYSTEM_PROMPT

        response = await self.chat_provider.generate(prompt, system_prompt=system_prompt)

        return AnswerResult(
            response=response.strip() or EMPTY_RESPONSE,
            citations=build_citations(matches),
            sources=sources,
        )


# Singleton instance
_answer_service: Optional[AnswerService] = None


def get_answer_service() -> AnswerService:
    """Get singleton answer service instance."""
    global _answer_service
    if _answer_service is None:
        _answer_service = AnswerService()
    return _answer_service
