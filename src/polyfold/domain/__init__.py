"""Domain types shared by every polyfold layer."""
