"""Model client contract and its HTTP implementation."""
