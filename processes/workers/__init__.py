"""Worker operators (hack/grow/weaken) launched on bot hosts by the optimizer."""
