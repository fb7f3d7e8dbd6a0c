# Maboroshi
# SPDX-License-Identifier: GPL-3.0-or-later

"""Maboroshi: search, stream and play music with yt-dlp and mpv."""

__version__ = "0.1.0"
