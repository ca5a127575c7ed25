"""WeChat article pipeline: draft, format, illustrate and narrate."""
