from multiprocessing import cpu_count
############################## Read Format ####################################
#
# Reads are Illumina paired-end FASTQ files, one forward and one reverse file
# per sample, with PHRED+33 quality strings. Nucleotides are drawn from ACGTN.
#
###############################################################################

ASCII_BASE = 33
max_PHRED = 62          # Largest quality score in the default error model
fastq_handle = '.fastq'
nucleotides = 'ACGT'

######################## Filtering Parameters #################################

trim_left = (0, 0)      # Bases removed from the start of (forward, reverse) reads
trunc_len = (0, 0)      # Truncate reads to this length, discard shorter (0 = off)
trunc_q = 2             # Truncate at the first quality score <= trunc_q
max_ee = (2., 2.)       # Maximum Expected Errors per (forward, reverse) read
max_n = 0               # Reads with more N bases are discarded
min_len = 20            # Reads shorter than this (after trimming) are discarded

filtered_dir = 'filtered/'
trimmed_dir = 'trimmed/'

####################### Error-Model Learning ##################################

nbases = int(1e8)                   # Base budget of reads sampled for learning
max_consist = 10                    # Maximum self-consistency iterations
convergence_threshold = 1e-6        # Max absolute change in any error rate
error_floor = 1e-7                  # Fitted rates are clipped to [floor, ceiling]
error_ceiling = 0.25
pseudocount = 1                     # Laplace smoothing of transition tallies

######################### Denoising (DADA) ####################################

omega_a = 1e-40         # Abundance p-value threshold (Bonferroni-corrected)
use_kmers = True        # Screen comparisons by k-mer distance
kmer_size = 5
kdist_cutoff = 0.42     # Pairs further apart than this are never compared
max_clusters = 0        # 0 = unlimited
max_shuffle = 10        # Reassignment rounds per promotion
max_promotions = 10000  # Iteration budget of the divisive loop
detect_singletons = False

######################## Paired-end Merging ###################################

min_overlap = 12
max_mismatch = 1        # Overlap mismatches tolerated in lenient mode (otherwise 0)
mismatch_penalty = 64   # Ungapped overlap score = matches - penalty*mismatches
lenient = False         # Resolve overlap mismatches by the higher quality base
trim_overhang = False
just_concatenate = False
concatenation_spacer = 10*'N'

######################### Sequence Table ######################################

length_band = None      # (min, max) expected amplicon length, inclusive
order_by = 'first'      # 'first' (discovery order), 'abundance' or 'sequence'

########################## Chimera Removal ####################################

chimera_method = 'consensus'            # 'consensus', 'per-sample' or 'pooled'
min_fold_parent_over_abundance = 1.5
min_parent_abundance = 2
min_sample_fraction = 0.9
ignore_n_negatives = 1
allow_one_off = False
ambiguity_warning_rate = 0.1

############################## Outputs ########################################

table_file = 'seqtab.tsv'
catalog_file = 'asvs.fasta'
track_file = 'track.tsv'
error_model_file = 'error_model_{direction}.csv'

CPUs = cpu_count()
