"""Server side: action dispatcher and the websocket daemon in front of the filesystem store."""
