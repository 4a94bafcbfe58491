"""Legal notice vault: encrypted document storage, access gate and IPFS recovery."""
