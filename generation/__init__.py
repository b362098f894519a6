"""
Paper Generation Pipeline
generation/

Steps:
1. Quota Ledger         - monthly quota precondition (user row locked)
2. Retrieval Engine     - course-scoped similarity search → ranked excerpts
3. Prompt               - deterministic JSON input (course, plan, request, policy, context)
4. GPT Client           - OpenAI-compatible chat completions in JSON mode
5. Validator            - strict structural + citation + marking-scheme checks
6. Paper Generator      - orchestrates 1-5 and persists variants
"""
