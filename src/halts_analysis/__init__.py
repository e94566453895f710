"""Poisson vs. Negative Binomial count models for simulated trading halts."""
