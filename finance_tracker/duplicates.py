def is_duplicate(existing, candidate):
    """Content match on date, account, category, subcategory, note, INR and kind.

    ``ID``, ``Description`` and ``Amount`` are not compared.
    """
    return existing.fingerprint() == candidate.fingerprint()


def find_new(existing, candidates):
    existing_fingerprints = {transaction.fingerprint() for transaction in existing}
    partition = {"new": [], "duplicates": []}
    for candidate in candidates:
        if candidate.fingerprint() in existing_fingerprints:
            partition["duplicates"].append(candidate)
        else:
            partition["new"].append(candidate)
    return partition
