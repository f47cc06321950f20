"""notesync command-line interface."""
