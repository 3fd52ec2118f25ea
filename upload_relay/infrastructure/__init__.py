"""
Infrastructure layer containing external dependencies and I/O operations.

This layer handles configuration, logging, storage backends and the HTTP
transport used by the upload pipeline.
"""
