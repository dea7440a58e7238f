"""Prompt templates shared by providers and the response generator."""

VISION_EXTRACTION_PROMPT = """You are a document analysis expert. Extract ALL content from this document comprehensively.

Your task:
1. Extract ALL text exactly as written (preserve formatting, lists, tables)
2. Describe ALL images, diagrams, charts, and graphics in detail
3. Describe any tables with their structure and data
4. Note any logos, signatures, or visual elements
5. Preserve the logical reading order

Start every page with a line of the form: --- Page N ---
Format your response as clean, searchable text that captures everything on the page.
For images/charts, describe them like: [IMAGE: Description of what the image shows]
For tables, format them clearly with headers and data.

Be thorough - this text will be used to answer questions about the document."""


# Constant across agents; only the leading system prompt varies.
RAG_USER_PROMPT_TEMPLATE = """Context from company documents:
---
{context}
---

User question: {question}

Instructions:
- Answer based ONLY on the context provided above
- If the context doesn't contain relevant information, say so honestly
- Be concise and direct
- Cite specific documents when possible"""
