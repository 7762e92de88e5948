"""Model-facing pieces: intent rules, prompt, context, cache and invoker."""
