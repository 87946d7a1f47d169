"""Transition-timing measurement engine.

Drives a SpinApp or Deployment through scale-from-zero and forced-delete
transitions and measures how long the cluster takes to report a ready pod.
"""
