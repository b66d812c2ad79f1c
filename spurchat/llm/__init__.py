"""Model access: Claude completions and streaming, embeddings, prompts, error mapping."""
