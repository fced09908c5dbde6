"""Check cycle and branch state resources."""
