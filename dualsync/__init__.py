"""Play a remote-controlled video and a local audio track as one session."""
