"""Prompt templates used by context generation and retrieval strategies."""

from __future__ import annotations

DEFAULT_CONTEXT_PROMPT = (
    "Generate a brief contextual summary for this text chunk to enhance search "
    "retrieval, two to three short sentences max. The chunk contains merged content "
    "from different document sections, so focus on the main topics and concepts "
    "rather than the sequential flow. Answer only with the succinct context and "
    "nothing else."
)

DEFAULT_GLOBAL_SUMMARY_PROMPT = (
    "Summarize the following document in 5-7 sentences, focusing on the main topics "
    "and concepts that would help retrieve relevant chunks."
)

SUMMARY_UNAVAILABLE = "Unable to generate document summary"

CHUNK_CONTEXT_TEMPLATE = (
    "<document>\n{document}\n</document>\n"
    "Here is the chunk we want to situate within the whole document\n"
    "<chunk>\n{chunk}\n</chunk>\n"
    "{instruction}"
)

GLOBAL_SUMMARY_TEMPLATE = "{instruction}\n\n<document>\n{document}\n</document>"

DEFAULT_ANSWER_PROMPT = (
    "Use the following pieces of context to answer the question at the end.\n\n"
    "{context}\n\n"
    "Question: {question}\n"
    "Answer:"
)

DEFAULT_QUERY_GENERATION_PROMPT = (
    "You are an AI language model assistant. Your task is to generate {count} "
    "different versions of the given question to retrieve relevant documents from a "
    "vector database. By generating multiple perspectives on the user question, your "
    "goal is to help overcome some of the limitations of distance-based similarity search."
)

QUERY_VARIANTS_TEMPLATE = (
    "{instructions}\n\n"
    "Original question: {query}\n\n"
    "Generate {count} alternative versions of this question that would help retrieve "
    "the most relevant documents.\n\n"
    "IMPORTANT: Output ONLY the alternative questions, one per line, with no numbering, "
    "no explanations, no markdown formatting, and no additional text. Each line should "
    "contain exactly one complete question.\n\n"
    "Example format:\n"
    "What are the key features of this topic?\n"
    "How does this concept work in practice?\n"
    "What are the main benefits and applications?"
)

SUB_QUESTION_TEMPLATE = (
    "You are helping to answer a complex question through step-by-step reasoning.\n\n"
    "Original Question: \"{query}\"\n\n"
    "{previous}"
    "Generate the next specific sub-question that should be answered in Step {step} "
    "to help build toward answering the original question. The sub-question should:\n"
    "- Build on previous steps if any exist\n"
    "- Focus on a specific aspect that hasn't been fully addressed\n"
    "- Be answerable with document retrieval\n"
    "- Move toward answering the original question\n\n"
    "Output only the sub-question, no explanations:"
)

STEP_ANSWER_TEMPLATE = (
    "Answer the following sub-question using the provided documents. Be concise but "
    "thorough.\n\n"
    "{previous}"
    "Sub-question: {question}\n\n"
    "Available documents:\n{context}\n\n"
    "Answer:"
)

STOP_CHECK_TEMPLATE = (
    "Determine if we have sufficient information to answer the original question.\n\n"
    "Original Question: \"{query}\"\n\n"
    "Reasoning so far:\n{reasoning}\n\n"
    "Current step answer: {answer}\n\n"
    "Can the original question be sufficiently answered with the information gathered "
    "so far?\nRespond with only \"YES\" or \"NO\":"
)

SYNTHESIS_TEMPLATE = (
    "Provide a comprehensive answer to the original question using the step-by-step "
    "reasoning and supporting documents.\n\n"
    "Original Question: \"{query}\"\n\n"
    "Step-by-step reasoning:\n{reasoning}\n\n"
    "Supporting documents:\n{context}\n\n"
    "Synthesize a complete, well-structured answer that:\n"
    "1. Directly addresses the original question\n"
    "2. Incorporates insights from the step-by-step reasoning\n"
    "3. References relevant information from the documents\n"
    "4. Is coherent and comprehensive\n\n"
    "Final Answer:"
)

DEBUG_ANALYSIS_TEMPLATE = (
    "QUERY RETRIEVER DEBUG ANALYSIS\n\n"
    "The following debug data is from a document retrieval and reranking execution "
    "(strategy: {strategy}):\n\n"
    "Debug Data:\n{debug_data}\n\n"
    "Please analyze this data and provide insights on:\n"
    "- System performance and timing\n"
    "- Strategy effectiveness\n"
    "- Document retrieval effectiveness\n"
    "- Reranking impact\n"
    "- Areas for optimization\n\n"
    "Provide a structured analysis that could help optimize future queries."
)

NO_DOCUMENTS_ANSWER = "No relevant documents found in the vector store."
NO_STEP_DOCUMENTS_ANSWER = "No relevant documents found for this step."


def render_documents(contents: list[str]) -> str:
    """Render document bodies as numbered blocks for prompt stuffing."""

    return "\n".join(f"Document {i}:\n{content}\n" for i, content in enumerate(contents, start=1))
