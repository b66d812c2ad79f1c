"""Card-document retrieval: catalog of known cards and the Chroma vector lookup."""
