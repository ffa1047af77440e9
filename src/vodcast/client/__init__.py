"""Viewer-side synchronization against a vodcast server."""

from .reconciler import ClientPlaybackState, ClientReconciler

__all__ = ["ClientPlaybackState", "ClientReconciler"]
