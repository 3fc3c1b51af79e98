"""Adapters implementing core interfaces.

- runtime: RuntimeDriver over the Docker Engine API or the docker SDK
- registry: InstanceRegistry over SQL tables or process memory
"""
