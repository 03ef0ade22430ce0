# =============================================================================
# Services Package — Business Logic
# =============================================================================
# Ingestion side:
#   - extractor.py: text extraction (Docling for PDF/DOCX, plain TXT/MD)
#   - chunker.py: recursive separator-aware chunking with overlap
#   - tokens.py: character-based token estimation
#   - embedder.py: batched/parallel embedding with retries
#   - documents.py: document records and status transitions
#   - vectorstore.py: pluggable vector store protocol (pgvector, Chroma)
#
# Question side:
#   - reranker.py: similarity + keyword + length re-ranking
#   - context.py: greedy selection of ranked chunks within a token budget
#   - retrieval.py: embed → search → re-rank → select → system prompt
#   - llm.py: generation providers (OpenAI-compatible/Ollama, Anthropic)
#   - chat.py: one-shot and streamed answers
# =============================================================================
