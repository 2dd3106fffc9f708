from dataclasses import dataclass


@dataclass(frozen=True)
class SupplierStrategy:
    use_a: bool
    use_b: bool
    fallback_to_b: bool

    @property
    def calls_b(self) -> bool:
        return self.use_b or self.fallback_to_b

    @property
    def any(self) -> bool:
        return self.use_a or self.calls_b


def resolve_strategy(force_high_accuracy: bool, supplier_a_allowed: bool,
                     supplier_b_allowed: bool, has_resolved_audio: bool) -> SupplierStrategy:
    """
    Pick provider(s) for a job. A is the fast/cheap provider, B the accurate one.

    High-accuracy intent goes to B only. Standard intent goes to A, and to B
    only when A is not allowed at all. Without a reachable audio URL nothing
    can be called.
    """
    use_a = not force_high_accuracy and supplier_a_allowed and has_resolved_audio
    use_b = force_high_accuracy and supplier_b_allowed and has_resolved_audio
    fallback_to_b = (
        not use_a
        and not supplier_a_allowed
        and supplier_b_allowed
        and not force_high_accuracy
        and has_resolved_audio
    )
    return SupplierStrategy(use_a=use_a, use_b=use_b, fallback_to_b=fallback_to_b)
