"""AWS implementation of the cloud collaborators."""
