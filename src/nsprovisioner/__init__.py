"""Disposable, credentialed Kubernetes namespaces with a bounded lifetime."""

__version__ = "0.1.0"
