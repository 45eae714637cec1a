"""Generative collaborators (text completion, image generation) and the narrative renderer."""
