"""Deployment core: hashing, synchronization, routing, compute, revalidation, edge."""
