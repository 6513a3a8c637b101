"""Observers that watch derived claims and record higher-level findings."""
