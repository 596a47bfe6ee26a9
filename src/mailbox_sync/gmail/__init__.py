"""Gmail API collaborators: message client, OAuth, and MIME parsing."""
