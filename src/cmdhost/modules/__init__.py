"""Module system: path resolution, manifests, graph building, export binding and lifecycle."""
